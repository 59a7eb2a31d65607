import os
from typing import Optional

import requests

from bill_models import ReconcileResult


def get_webhook_url() -> Optional[str]:
    return os.getenv("SLACK_WEBHOOK_URL")


def format_sync_summary(result: ReconcileResult) -> str:
    lines = [f"🔄 Bill folder sync: {len(result.files)} bills scanned, {result.changed} changed"]
    if result.updated:
        lines.append(f"✅ {len(result.updated)} marked sent from the GST folder")
    if result.removed:
        lines.append(f"↩️ {len(result.removed)} reverted to pending (copy missing)")
    if result.errors:
        lines.append(f"⚠️ {len(result.errors)} errors")
    return "\n".join(lines)


def post_sync_summary(result: ReconcileResult, webhook_url: Optional[str] = None, timeout: int = 10):
    """Post a reconciliation summary to a Slack incoming webhook."""
    url = webhook_url or get_webhook_url()
    if not url:
        raise RuntimeError("SLACK_WEBHOOK_URL is not set")
    resp = requests.post(url, json={"text": format_sync_summary(result)}, timeout=timeout)
    resp.raise_for_status()
    if resp.text.strip() not in ("", "ok"):
        raise RuntimeError(f"Slack error: {resp.text}")
