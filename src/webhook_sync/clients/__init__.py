"""Collaborator API clients."""

from webhook_sync.clients.base import ApiClient
from webhook_sync.clients.broker import BrokerClient
from webhook_sync.clients.crm import CrmClient
from webhook_sync.clients.sink import SinkClient

__all__ = ["ApiClient", "BrokerClient", "CrmClient", "SinkClient"]
