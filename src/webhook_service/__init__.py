"""CRM change-event broker: subscriptions, signed fan-out, replay."""
