"""Building blocks shared by the webhook broker and the sync consumer."""
