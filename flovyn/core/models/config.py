# flovyn/core/models/config.py
from __future__ import annotations

import logging
import os
from typing import Annotated, Optional, Self
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, model_validator

from flovyn.core.errors import (
    ConfigurationError,
    ErrorCode,
    ValidationReport,
    raise_collected,
)

_SUPPORTED_SCHEMES = frozenset({'http', 'https', 'grpc', 'grpcs'})


def mask_secret(value: Optional[str]) -> str:
    """Mask a token or API key for logging, keeping only a short prefix."""
    if not value:
        return '<unset>'
    if len(value) <= 8:
        return '***'
    return f'{value[:4]}***'


class WorkerOptions(BaseModel):
    """
    Poll-loop settings for one worker (workflow or task).

    Controls how many activations run at once, how often an idle worker
    polls, and the backoff applied when polling itself fails.
    """

    model_config = ConfigDict(frozen=True, extra='forbid')

    max_concurrent: Annotated[int, Field(ge=1, le=10_000)] = Field(
        default=10,
        description='Maximum activations handled concurrently (1-10000)',
    )
    poll_interval_ms: Annotated[int, Field(ge=1, le=60_000)] = Field(
        default=100,
        description='Idle wait between polls when no activation is available (1ms-60s)',
    )
    poll_retry_initial_ms: Annotated[int, Field(ge=10, le=60_000)] = Field(
        default=500,
        description='Initial backoff after a failed poll (10ms-60s)',
    )
    poll_retry_max_ms: Annotated[int, Field(ge=10, le=300_000)] = Field(
        default=30_000,
        description='Maximum backoff after repeated failed polls (10ms-5min)',
    )

    @model_validator(mode='after')
    def validate_backoff(self) -> Self:
        report = ValidationReport('worker_options')
        if self.poll_retry_max_ms < self.poll_retry_initial_ms:
            report.add(
                ConfigurationError(
                    message='poll_retry_max_ms must be >= poll_retry_initial_ms',
                    code=ErrorCode.CONFIG_INVALID_WORKER_OPTIONS,
                    notes=[
                        f'poll_retry_initial_ms={self.poll_retry_initial_ms}ms',
                        f'poll_retry_max_ms={self.poll_retry_max_ms}ms',
                    ],
                    help_text='increase poll_retry_max_ms or reduce poll_retry_initial_ms',
                )
            )
        raise_collected(report)
        return self


def _default_workflow_worker() -> WorkerOptions:
    return WorkerOptions(max_concurrent=10)


def _default_task_worker() -> WorkerOptions:
    return WorkerOptions(max_concurrent=20)


class ClientConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')

    server_url: str = 'http://localhost:9090'
    # REST endpoint; derived from server_url by the transport when unset
    http_url: Optional[str] = None
    org_id: Optional[str] = None
    org_slug: Optional[str] = None
    queue: str = 'default'
    worker_token: Optional[str] = None
    api_key: Optional[str] = None
    workflow_worker: WorkerOptions = Field(default_factory=_default_workflow_worker)
    task_worker: WorkerOptions = Field(default_factory=_default_task_worker)
    shutdown_timeout_ms: Annotated[int, Field(ge=0, le=3_600_000)] = 30_000

    @model_validator(mode='after')
    def validate_connection(self) -> Self:
        """Validate URLs and identity fields.

        Collects all independent errors and raises them together.
        """
        report = ValidationReport('config')

        for field_name in ('server_url', 'http_url'):
            url = getattr(self, field_name)
            if url is None:
                continue
            parsed = urlparse(url)
            if parsed.scheme not in _SUPPORTED_SCHEMES or not parsed.netloc:
                report.add(
                    ConfigurationError(
                        message=f'invalid {field_name}: {url!r}',
                        code=ErrorCode.CONFIG_INVALID_SERVER_URL,
                        notes=[f'scheme={parsed.scheme or "<none>"}'],
                        help_text=(
                            'use a URL such as http://localhost:9090 '
                            f'(supported schemes: {", ".join(sorted(_SUPPORTED_SCHEMES))})'
                        ),
                    )
                )

        if not self.queue.strip():
            report.add(
                ConfigurationError(
                    message='queue must not be empty',
                    code=ErrorCode.CONFIG_MISSING_VALUE,
                    help_text="omit queue to use 'default'",
                )
            )

        raise_collected(report)
        return self

    @classmethod
    def from_env(cls, **overrides: object) -> ClientConfig:
        """Build a config from FLOVYN_* environment variables.

        Keyword overrides win over the environment.
        """
        env_map = {
            'server_url': 'FLOVYN_SERVER_URL',
            'http_url': 'FLOVYN_HTTP_URL',
            'org_id': 'FLOVYN_ORG_ID',
            'org_slug': 'FLOVYN_ORG_SLUG',
            'queue': 'FLOVYN_QUEUE',
            'worker_token': 'FLOVYN_WORKER_TOKEN',
            'api_key': 'FLOVYN_API_KEY',
        }
        values: dict[str, object] = {}
        for field_name, env_name in env_map.items():
            env_value = os.environ.get(env_name)
            if env_value:
                values[field_name] = env_value
        values.update(overrides)
        return cls.model_validate(values)

    def log_config(self, logger: Optional[logging.Logger] = None) -> None:
        """Log the effective configuration with secrets masked."""
        from flovyn.core.logging import get_logger

        log = logger or get_logger('config')
        log.info('Client configuration:')
        log.info(f'  server_url: {self.server_url}')
        if self.http_url:
            log.info(f'  http_url: {self.http_url}')
        log.info(f'  org: {self.org_id or self.org_slug or "<unset>"}')
        log.info(f'  queue: {self.queue}')
        log.info(f'  worker_token: {mask_secret(self.worker_token)}')
        log.info(f'  api_key: {mask_secret(self.api_key)}')
        log.info(
            f'  workflow_worker: max_concurrent={self.workflow_worker.max_concurrent}, '
            f'poll_interval_ms={self.workflow_worker.poll_interval_ms}'
        )
        log.info(
            f'  task_worker: max_concurrent={self.task_worker.max_concurrent}, '
            f'poll_interval_ms={self.task_worker.poll_interval_ms}'
        )
        log.info(f'  shutdown_timeout_ms: {self.shutdown_timeout_ms}')
