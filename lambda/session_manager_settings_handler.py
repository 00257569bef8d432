import json
import os
import time
from datetime import datetime, timezone
from typing import Any

import boto3
from botocore.exceptions import ClientError

DOCUMENT_NAME = "SSM-SessionManagerRunShell"
DOCUMENT_DESCRIPTION = "Document to hold regional settings for Session Manager"

_ssm_client = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ssm():
    global _ssm_client
    if _ssm_client is None:
        _ssm_client = boto3.client("ssm", region_name=os.environ.get("AWS_REGION"))
    return _ssm_client


def _as_bool(value: Any) -> bool:
    # CloudFormation delivers custom resource properties as strings.
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() == "true"


def _error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def build_settings(props: dict[str, Any]) -> dict[str, Any]:
    return {
        "schemaVersion": "1.0",
        "description": DOCUMENT_DESCRIPTION,
        "sessionType": "Standard_Stream",
        "inputs": {
            "s3BucketName": str(props.get("s3BucketName") or ""),
            "s3KeyPrefix": str(props.get("s3KeyPrefix") or ""),
            "s3EncryptionEnabled": _as_bool(props.get("s3EncryptionEnabled")),
            "cloudWatchLogGroupName": str(props.get("cloudWatchLogGroupName") or ""),
            "cloudWatchEncryptionEnabled": _as_bool(props.get("cloudWatchEncryptionEnabled")),
            "kmsKeyId": str(props.get("kmsKeyId") or ""),
            "runAsEnabled": False,
            "runAsDefaultUser": "",
        },
    }


def _document_exists() -> bool:
    try:
        _ssm().describe_document(Name=DOCUMENT_NAME)
    except ClientError as err:
        if _error_code(err) == "InvalidDocument":
            return False
        raise
    return True


def _apply_settings(settings: dict[str, Any]) -> str:
    content = json.dumps(settings)
    if not _document_exists():
        _ssm().create_document(
            Name=DOCUMENT_NAME,
            Content=content,
            DocumentType="Session",
        )
        return "created"
    try:
        _ssm().update_document(
            Name=DOCUMENT_NAME,
            Content=content,
            DocumentVersion="$LATEST",
        )
    except ClientError as err:
        if _error_code(err) == "DuplicateDocumentContent":
            return "unchanged"
        raise
    return "updated"


def on_event(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    start = time.time()
    request_type = str(event.get("RequestType", ""))
    log = {
        "event": "session_manager_settings",
        "ts": _now_iso(),
        "request_type": request_type,
        "document": DOCUMENT_NAME,
    }

    if request_type in {"Create", "Update"}:
        settings = build_settings(event.get("ResourceProperties") or {})
        log["outcome"] = _apply_settings(settings)
    elif request_type == "Delete":
        # Preferences stay in place; there is no previous value to restore.
        log["outcome"] = "skipped"
    else:
        log["outcome"] = "invalid_request_type"
        print(json.dumps(log, separators=(",", ":"), sort_keys=True))
        raise ValueError(f"Unsupported RequestType: {request_type!r}")

    log["duration_ms"] = int((time.time() - start) * 1000)
    print(json.dumps(log, separators=(",", ":"), sort_keys=True))
    return {
        "PhysicalResourceId": event.get("PhysicalResourceId") or DOCUMENT_NAME,
    }
