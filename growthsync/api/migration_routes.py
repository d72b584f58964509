"""GrowthSync — Storage Mode & Backup Routes."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from growthsync.api.deps import get_migration_manager
from growthsync.core.logging import get_logger
from growthsync.migration.manager import MigrationManager
from growthsync.models.metric_models import SyncMode
from growthsync.models.migration_models import (
    BackupInfo,
    MigrationResult,
    ModeSwitchValidation,
    ProjectDataStats,
    RestoreResult,
)

logger = get_logger("api.migration")

router = APIRouter(prefix="/projects/{project_id}", tags=["Storage mode"])


class ModeSwitchRequest(BaseModel):
    target_mode: SyncMode
    preserve_existing_data: bool = True
    create_backup: bool = True
    record_type: Optional[str] = None
    """Record type for rows converted into individual records."""


class ValidateRequest(BaseModel):
    target_mode: SyncMode


@router.get("/data-stats", response_model=ProjectDataStats)
async def data_stats(project_id: str, manager: MigrationManager = Depends(get_migration_manager)):
    return await manager.get_project_data_stats(project_id)


@router.post("/mode/validate", response_model=ModeSwitchValidation)
async def validate_mode(
    project_id: str,
    request: ValidateRequest,
    manager: MigrationManager = Depends(get_migration_manager),
):
    return await manager.validate_mode_switch(project_id, request.target_mode)


@router.post("/mode", response_model=MigrationResult)
async def switch_mode(
    project_id: str,
    request: ModeSwitchRequest,
    manager: MigrationManager = Depends(get_migration_manager),
):
    result = await manager.switch_mode(
        project_id,
        request.target_mode,
        preserve_existing_data=request.preserve_existing_data,
        create_backup=request.create_backup,
        record_type=request.record_type,
    )
    if not result.success:
        logger.warning(
            f"Mode switch failed: {result.error_message}", extra={"project_id": project_id}
        )
    return result


@router.get("/backups", response_model=List[BackupInfo])
async def list_backups(
    project_id: str, manager: MigrationManager = Depends(get_migration_manager)
):
    return await manager.list_backups(project_id)


@router.post("/backups/{backup_name}/restore", response_model=RestoreResult)
async def restore_backup(
    project_id: str,
    backup_name: str,
    manager: MigrationManager = Depends(get_migration_manager),
):
    result = await manager.restore_from_backup(project_id, backup_name)
    if not result.success and result.error_message and "not found" in result.error_message:
        raise HTTPException(status_code=404, detail=result.error_message)
    return result
