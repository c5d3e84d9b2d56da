"""Wires adapters and application services from an ``AppConfig``."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import requests

from stardust_dsp.application.deliveries import DeliveryRepository, DistributorRegistry, ErrorReporter
from stardust_dsp.application.event_publisher import EventPublisher
from stardust_dsp.application.ingestion import (
    AcknowledgmentNotifier,
    DeliveryReceiver,
    ErnParser,
    ErnValidator,
    ErrorNotificationHandler,
    ReleaseProcessor,
)
from stardust_dsp.application.notifications import NotificationCenter
from stardust_dsp.application.pipeline import PipelineWorker
from stardust_dsp.application.ports import DocumentStore, MessageQueue, ObjectStore, ReportTransport, ValidationService
from stardust_dsp.application.reporting import (
    PaymentProcessor,
    PlayTracker,
    ReportDispatcher,
    ReportGenerator,
    RoyaltyEngine,
    StatementRepository,
    UsageAggregator,
)
from stardust_dsp.domain.jobs import (
    ACKNOWLEDGE_TOPIC,
    ERROR_TOPIC,
    PARSE_TOPIC,
    PROCESS_TOPIC,
    VALIDATE_TOPIC,
)
from stardust_dsp.domain.policies import DEFAULT_RETRY_POLICY, RetryPolicy
from stardust_dsp.infrastructure.document_stores import InMemoryDocumentStore, JsonFileDocumentStore
from stardust_dsp.infrastructure.logging_event_publisher import LoggingEventPublisher
from stardust_dsp.infrastructure.message_queues import DocumentStoreMessageQueue
from stardust_dsp.infrastructure.object_stores import LocalObjectStore, MinioObjectStore
from stardust_dsp.infrastructure.report_transports import (
    ApiTransport,
    EmailTransport,
    FtpTransport,
    S3Transport,
    WebhookTransport,
)
from stardust_dsp.infrastructure.validation_clients import LocalErnValidator, WorkbenchValidationClient
from stardust_dsp.storage import get_storage_client, load_storage_config
from stardust_dsp.utils.config import AppConfig
from stardust_dsp.utils.timestamps import utc_now

LOGGER = logging.getLogger(__name__)


def build_document_store(config: AppConfig) -> DocumentStore:
    if config.storage.backend == "json":
        return JsonFileDocumentStore(config.storage.json_path)
    return InMemoryDocumentStore()


def build_object_store(config: AppConfig) -> ObjectStore:
    if config.storage.objects == "minio":
        storage = load_storage_config()
        return MinioObjectStore(
            get_storage_client(),
            storage.bucket,
            storage.endpoint,
            public_base_url=storage.public_base_url,
            secure=storage.secure,
        )
    return LocalObjectStore(config.storage.local_root)


def build_validation_service(config: AppConfig, session: requests.Session | None = None) -> ValidationService:
    if config.validation.mode == "local":
        return LocalErnValidator()
    return WorkbenchValidationClient(
        config.validation.endpoint,
        timeout_seconds=config.validation.timeout_seconds,
        session=session,
    )


def build_transports(config: AppConfig, session: requests.Session | None = None) -> dict[str, ReportTransport]:
    reporting = config.reporting
    session = session or requests.Session()
    transports: list[ReportTransport] = [
        EmailTransport(api_key=reporting.sendgrid_api_key, sender=reporting.email_sender),
        FtpTransport(timeout_seconds=reporting.transport_timeout_seconds),
        S3Transport(),
        ApiTransport(session, timeout_seconds=reporting.transport_timeout_seconds),
        WebhookTransport(session, timeout_seconds=reporting.transport_timeout_seconds),
    ]
    return {transport.method: transport for transport in transports}


@dataclass
class Runtime:
    """Every service one process needs, sharing a store, queue and object store."""

    config: AppConfig
    store: DocumentStore
    queue: MessageQueue
    objects: ObjectStore
    event_publisher: EventPublisher
    deliveries: DeliveryRepository
    distributors: DistributorRegistry
    notifications: NotificationCenter
    receiver: DeliveryReceiver
    worker: PipelineWorker
    plays: PlayTracker
    usage: UsageAggregator
    royalties: RoyaltyEngine
    statements: StatementRepository
    payments: PaymentProcessor
    reports: ReportGenerator
    dispatcher: ReportDispatcher

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        store: DocumentStore | None = None,
        objects: ObjectStore | None = None,
        validation_service: ValidationService | None = None,
        transports: dict[str, ReportTransport] | None = None,
        event_publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "Runtime":
        store = store if store is not None else build_document_store(config)
        objects = objects if objects is not None else build_object_store(config)
        validation_service = validation_service or build_validation_service(config)
        transports = transports if transports is not None else build_transports(config)
        event_publisher = event_publisher or LoggingEventPublisher()
        pipeline = config.pipeline

        queue = DocumentStoreMessageQueue(store, clock=clock)
        deliveries = DeliveryRepository(store)
        distributors = DistributorRegistry(store, auto_create=pipeline.auto_create_distributors)
        notifications = NotificationCenter(store)
        errors = ErrorReporter(queue)

        stage_retries = RetryPolicy(
            policy_id="stage-retry",
            max_attempts=config.validation.max_attempts,
            backoff_base_seconds=DEFAULT_RETRY_POLICY.backoff_base_seconds,
        )
        delivery_retries = RetryPolicy(
            policy_id="report-retry",
            max_attempts=config.reporting.max_delivery_retries,
            backoff_base_seconds=DEFAULT_RETRY_POLICY.backoff_base_seconds,
        )

        handlers = {
            PARSE_TOPIC: ErnParser(deliveries, objects, queue, errors, event_publisher=event_publisher),
            VALIDATE_TOPIC: ErnValidator(
                deliveries, objects, validation_service, queue, errors, event_publisher=event_publisher
            ),
            PROCESS_TOPIC: ReleaseProcessor(
                store,
                deliveries,
                objects,
                queue,
                errors,
                cdn_base_url=pipeline.cdn_base_url,
                event_publisher=event_publisher,
            ),
            ACKNOWLEDGE_TOPIC: AcknowledgmentNotifier(
                deliveries,
                distributors,
                notifications,
                pipeline.platform_party_id,
                pipeline.platform_party_name,
                event_publisher=event_publisher,
            ),
            ERROR_TOPIC: ErrorNotificationHandler(
                deliveries,
                distributors,
                notifications,
                pipeline.platform_party_id,
                pipeline.platform_party_name,
            ),
        }

        runtime = cls(
            config=config,
            store=store,
            queue=queue,
            objects=objects,
            event_publisher=event_publisher,
            deliveries=deliveries,
            distributors=distributors,
            notifications=notifications,
            receiver=DeliveryReceiver(
                deliveries, distributors, queue, errors, notifications, event_publisher=event_publisher
            ),
            worker=PipelineWorker(
                queue,
                handlers,
                retry_policy=stage_retries,
                max_concurrency=pipeline.max_concurrency,
                sleep=sleep,
            ),
            plays=PlayTracker(store, event_publisher=event_publisher, clock=clock),
            usage=UsageAggregator(store, event_publisher=event_publisher),
            royalties=RoyaltyEngine(store, event_publisher=event_publisher),
            statements=StatementRepository(store),
            payments=PaymentProcessor(store),
            reports=ReportGenerator(
                store,
                objects,
                distributors,
                pipeline.platform_party_id,
                pipeline.platform_party_name,
                download_url_ttl_days=config.reporting.download_url_ttl_days,
                notifications=notifications,
                event_publisher=event_publisher,
            ),
            dispatcher=ReportDispatcher(
                store,
                objects,
                distributors,
                transports,
                download_url_ttl_days=config.reporting.download_url_ttl_days,
                retry_policy=delivery_retries,
                pending_batch_limit=config.reporting.pending_batch_limit,
                retry_batch_limit=config.reporting.retry_batch_limit,
                event_publisher=event_publisher,
            ),
        )
        LOGGER.debug(
            "runtime_built",
            extra={
                "document_backend": config.storage.backend,
                "object_backend": config.storage.objects,
                "validation_mode": config.validation.mode,
            },
        )
        return runtime
