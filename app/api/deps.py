"""FastAPI dependencies for settings, sessions and the cluster controller."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from app.core.config import Settings, get_settings
from app.core.database import async_session_factory, get_session
from app.services.cluster import ClusterGateway
from app.workers.provision import Provisioner


def get_session_factory() -> sessionmaker:
    """Factory for work that outlives a single request session."""
    return async_session_factory


@lru_cache
def get_cluster_gateway() -> ClusterGateway:
    return ClusterGateway(get_settings())


def get_provisioner(
    gateway: Annotated[ClusterGateway, Depends(get_cluster_gateway)],
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Provisioner:
    return Provisioner(gateway, session_factory, settings)


# Typed shorthand for use in route signatures
Session = Annotated[AsyncSession, Depends(get_session)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Gateway = Annotated[ClusterGateway, Depends(get_cluster_gateway)]
ProvisionerDep = Annotated[Provisioner, Depends(get_provisioner)]
