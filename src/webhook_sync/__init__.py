"""CRM webhook consumer: verified intake, retry queue and analytics sync."""
