"""Payload builders for the webhook events emitted by the job pipeline."""

from typing import Optional


def backup_complete_payload(
    database_id: str,
    database_name: str,
    backup_path: str,
    size_bytes: int,
    user_email: Optional[str],
) -> dict:
    return {
        "database_id": database_id,
        "database_name": database_name,
        "backup_path": backup_path,
        "size_bytes": size_bytes,
        "user_email": user_email,
    }


def restore_complete_payload(
    database_id: str,
    database_name: str,
    backup_path: str,
    tables_restored: int,
    user_email: Optional[str],
) -> dict:
    return {
        "database_id": database_id,
        "database_name": database_name,
        "backup_path": backup_path,
        "tables_restored": tables_restored,
        "user_email": user_email,
    }


def job_failed_payload(
    job_id: str,
    job_type: str,
    error: str,
    database_id: Optional[str],
    user_email: Optional[str],
) -> dict:
    return {
        "job_id": job_id,
        "job_type": job_type,
        "error": error,
        "database_id": database_id,
        "user_email": user_email,
    }


def backup_delete_payload(
    database_id: str,
    backup_paths: list[str],
    failed: int,
    user_email: Optional[str],
) -> dict:
    return {
        "database_id": database_id,
        "backup_paths": backup_paths,
        "deleted": len(backup_paths),
        "failed": failed,
        "user_email": user_email,
    }


def batch_complete_payload(
    operation_type: str,
    total: int,
    succeeded: int,
    failed: int,
    user_email: Optional[str],
    database_id: Optional[str] = None,
) -> dict:
    return {
        "operation_type": operation_type,
        "database_id": database_id,
        "total": total,
        "succeeded": succeeded,
        "failed": failed,
        "user_email": user_email,
    }
