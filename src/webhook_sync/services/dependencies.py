"""Application-scoped service lookup for aiohttp handlers."""
from __future__ import annotations

from aiohttp import web

from webhook_sync.services.intake import ConsumerIntake
from webhook_sync.services.queue import JobQueue

INTAKE_KEY = "consumer_intake"
QUEUE_KEY = "job_queue"


def get_intake(request: web.Request) -> ConsumerIntake:
    return request.app[INTAKE_KEY]


def get_queue(request: web.Request) -> JobQueue:
    return request.app[QUEUE_KEY]
