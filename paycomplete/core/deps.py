from dataclasses import dataclass

import requests
from fastapi import Request
from sqlalchemy.engine import Engine

from paycomplete.core.config import Settings, settings
from paycomplete.db.base import Base
from paycomplete.db.session import build_engine, build_session_factory
from paycomplete.services.dispatcher import FanoutDispatcher
from paycomplete.services.fanout import NotificationFanout, build_collaborators
from paycomplete.services.idempotency import InMemoryReferenceGuard, ReferenceGuard, SqlReferenceGuard
from paycomplete.services.order_processing import PaymentConfirmationOrchestrator
from paycomplete.services.payment_gateway import PaystackGateway


@dataclass
class RelayServices:
    orchestrator: PaymentConfirmationOrchestrator
    dispatcher: FanoutDispatcher
    http_session: requests.Session
    engine: Engine | None = None

    def close(self) -> None:
        self.dispatcher.shutdown(wait_for_pending=True)
        self.http_session.close()
        if self.engine is not None:
            self.engine.dispose()


def _build_guard(config: Settings) -> tuple[ReferenceGuard, Engine | None]:
    if config.idempotency_backend == "database":
        engine = build_engine(config)
        Base.metadata.create_all(bind=engine)
        return SqlReferenceGuard(build_session_factory(engine)), engine
    return InMemoryReferenceGuard(), None


def build_services(config: Settings) -> RelayServices:
    http_session = requests.Session()
    http_session.headers["User-Agent"] = f"{config.app_name.replace(' ', '-').lower()}/0.1"
    guard, engine = _build_guard(config)

    try:
        orchestrator = PaymentConfirmationOrchestrator(
            gateway=PaystackGateway(
                secret_key=config.paystack_secret_key,
                base_url=config.paystack_base_url,
                session=http_session,
                timeout=config.http_timeout_seconds,
            ),
            guard=guard,
            fanout=NotificationFanout(build_collaborators(config, http_session)),
            commit_policy=config.idempotency_commit_policy,
            required_collaborators=config.fanout_required_collaborators,
        )
    except ValueError:
        http_session.close()
        if engine is not None:
            engine.dispose()
        raise
    return RelayServices(
        orchestrator=orchestrator,
        dispatcher=FanoutDispatcher(max_workers=config.fanout_max_workers),
        http_session=http_session,
        engine=engine,
    )


def get_settings() -> Settings:
    return settings


def get_services(request: Request) -> RelayServices:
    return request.app.state.services


def get_orchestrator(request: Request) -> PaymentConfirmationOrchestrator:
    return get_services(request).orchestrator


def get_dispatcher(request: Request) -> FanoutDispatcher:
    return get_services(request).dispatcher
