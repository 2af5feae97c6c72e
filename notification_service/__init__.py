"""Event notification service: subscriptions by phone, delivery over Telegram."""
