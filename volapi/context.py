"""
Service wiring.

VolapiContext holds every collaborator a request handler needs. It is built
once at startup and kept on the FastAPI application state.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from volapi.config import VolapiConfig
from volapi.database import create_db_engine, create_session_factory, init_db
from volapi.services.clients import ImgapiClient, NapiClient, PapiClient, VmapiClient
from volapi.services.networks import NetworkValidator
from volapi.services.record_store import RecordStore
from volapi.services.reference_tracker import ReferenceTracker
from volapi.services.reservation_manager import ReservationManager
from volapi.services.volume_manager import VolumeManager

logger = logging.getLogger(__name__)


@dataclass
class VolapiContext:
    config: VolapiConfig
    engine: Engine
    store: RecordStore
    vmapi: VmapiClient
    papi: PapiClient
    imgapi: ImgapiClient
    napi: NapiClient
    references: ReferenceTracker
    volumes: VolumeManager
    reservations: ReservationManager

    def close(self) -> None:
        for client in (self.vmapi, self.papi, self.imgapi, self.napi):
            client.close()
        self.engine.dispose()


def build_context(
    config: VolapiConfig,
    vmapi: Optional[VmapiClient] = None,
    papi: Optional[PapiClient] = None,
    imgapi: Optional[ImgapiClient] = None,
    napi: Optional[NapiClient] = None,
) -> VolapiContext:
    """
    Create the database, clients and managers described by config.

    Args:
        config: Service configuration
        vmapi, papi, imgapi, napi: Clients to use instead of the ones
            built from config
    """
    engine = create_db_engine(config.database_url)
    init_db(engine)
    store = RecordStore(create_session_factory(engine))

    timeout = config.http_timeout_seconds
    vmapi = vmapi or VmapiClient(
        config.vmapi_url,
        timeout=timeout,
        job_poll_interval=config.vm_job_poll_interval_seconds,
        job_timeout=config.vm_job_timeout_seconds,
    )
    papi = papi or PapiClient(config.papi_url, timeout=timeout)
    imgapi = imgapi or ImgapiClient(config.imgapi_url, timeout=timeout)
    napi = napi or NapiClient(config.napi_url, timeout=timeout)

    references = ReferenceTracker(
        store,
        max_tries=config.ref_update_max_tries,
        retry_delay=config.ref_update_retry_delay_seconds,
    )
    volumes = VolumeManager(
        store,
        references,
        vmapi=vmapi,
        papi=papi,
        imgapi=imgapi,
        network_validator=NetworkValidator(napi),
        default_volume_size_mb=config.default_volume_size_mb,
    )
    reservations = ReservationManager(store, references)

    logger.info("VOLAPI context ready (database=%s)", engine.url.render_as_string(hide_password=True))
    return VolapiContext(
        config=config,
        engine=engine,
        store=store,
        vmapi=vmapi,
        papi=papi,
        imgapi=imgapi,
        napi=napi,
        references=references,
        volumes=volumes,
        reservations=reservations,
    )
