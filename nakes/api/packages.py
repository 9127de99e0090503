"""
HTTP endpoints over the lockfile and the resolver.
"""
from __future__ import annotations

import logging
from typing import List, Union

from fastapi import APIRouter, Depends, HTTPException, status

from nakes.core.dependencies import get_lockfile, get_resolver
from nakes.core.errors import (
    DatabaseError,
    InvalidPackageSchema,
    NakesError,
    PackageInUse,
    RequestError,
    ValidationError,
)
from nakes.domain.models import Package, PackageRow, PackageTree, ResolveRequest
from nakes.services.resolver import Resolver
from nakes.storage.lockfile_store import LockfileStore

logger = logging.getLogger(__name__)
router = APIRouter()


def _to_http_error(exc: NakesError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": exc.code, "kind": exc.kind.value, "message": exc.message},
        )
    if isinstance(exc, (RequestError, InvalidPackageSchema)):
        status_code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, PackageInUse):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, DatabaseError):
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": exc.message})


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found in lockfile")


@router.get("/packages")
async def list_packages(lockfile: LockfileStore = Depends(get_lockfile)) -> List[PackageRow]:
    try:
        return await lockfile.list_packages()
    except NakesError as e:
        raise _to_http_error(e) from e


@router.get("/packages/{package_id}")
async def get_package(package_id: int, lockfile: LockfileStore = Depends(get_lockfile)) -> Package:
    try:
        row = await lockfile.lookup_by_id(package_id)
        if row is None:
            raise _not_found(f"Package {package_id}")
        return await lockfile.load_package(row)
    except NakesError as e:
        raise _to_http_error(e) from e


@router.get("/packages/{name}/{version}")
async def get_package_by_namever(
    name: str,
    version: str,
    lockfile: LockfileStore = Depends(get_lockfile),
) -> Package:
    try:
        row = await lockfile.lookup_by_namever(name, version)
        if row is None:
            raise _not_found(f"{name}=={version}")
        return await lockfile.load_package(row)
    except NakesError as e:
        raise _to_http_error(e) from e


@router.get("/hashes/{hash_value}")
async def get_package_by_hash(hash_value: str, lockfile: LockfileStore = Depends(get_lockfile)) -> Package:
    try:
        row = await lockfile.lookup_by_hash(hash_value)
        if row is None:
            raise _not_found(f"Hash {hash_value}")
        return await lockfile.load_package(row)
    except NakesError as e:
        raise _to_http_error(e) from e


@router.post("/resolve", response_model=None)
async def resolve_package(
    body: ResolveRequest,
    resolver: Resolver = Depends(get_resolver),
) -> Union[PackageTree, Package]:
    """
    Resolve a package into the lockfile, fetching from the registry on a miss.
    """
    try:
        if body.deep:
            return await resolver.resolve_tree(body.name, body.version)
        return await resolver.resolve(body.name, body.version)
    except NakesError as e:
        logger.error(f"Resolution of {body.name}=={body.version} failed: {e}")
        raise _to_http_error(e) from e


@router.delete("/packages/{package_id}")
async def delete_package(package_id: int, lockfile: LockfileStore = Depends(get_lockfile)) -> dict:
    """
    Remove a package from the lockfile. Refused while other packages depend on it.
    """
    try:
        row = await lockfile.lookup_by_id(package_id)
        if row is None:
            raise _not_found(f"Package {package_id}")
        await lockfile.delete_package(package_id)
    except NakesError as e:
        raise _to_http_error(e) from e
    logger.info(f"Removed {row.name}=={row.version} (id {package_id})")
    return {"success": True, "message": f"Removed {row.name}=={row.version}"}
