"""
Monitoring des jobs de pricing et de demande.

- trace le début et la fin de chaque job dans la table `pricing_job_logs`,
- envoie les alertes (toujours loggées, postées sur Slack si activé).
"""

import asyncio
import json
import logging
import os
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import aiohttp
from supabase import Client, create_client  # type: ignore

from ..config.settings import Settings

logger = logging.getLogger(__name__)

JOB_LOGS_TABLE = "pricing_job_logs"


class AlertLevel(Enum):
    """Niveaux d'alerte."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class JobStatus(Enum):
    """Statuts d'exécution des jobs."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


def status_from_counts(succeeded: int, failed: int) -> JobStatus:
    """success si aucune erreur, failed si rien n'a réussi, partial sinon."""
    if failed == 0:
        return JobStatus.SUCCESS
    if succeeded == 0:
        return JobStatus.FAILED
    return JobStatus.PARTIAL


class PipelineMonitor:
    """
    Gestionnaire de monitoring des jobs.

    Un échec d'écriture du log de job n'interrompt jamais le job : il est loggé en ERROR.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """
        Args:
            settings: Configuration (si None, charge depuis env)
        """
        self.settings = settings or Settings.from_env()
        self._supabase_client: Optional[Client] = None
        self._current_jobs: Dict[str, Dict[str, Any]] = {}
        # Alertes envoyées par `notify` depuis une boucle en cours
        self._pending_alerts: Set["asyncio.Task[bool]"] = set()

        self.alert_slack_enabled = os.getenv("ALERT_SLACK_ENABLED", "false").lower() == "true"
        self.slack_webhook_url = os.getenv("SLACK_WEBHOOK_URL", "")

    def _get_supabase_client(self) -> Optional[Client]:
        """Client Supabase (lazy init), None si non configuré."""
        if not self.settings.supabase_url or not self.settings.supabase_key:
            return None
        if self._supabase_client is None:
            self._supabase_client = create_client(self.settings.supabase_url, self.settings.supabase_key)
        return self._supabase_client

    async def log_job_start(
        self,
        job_name: str,
        params: Optional[Dict[str, Any]] = None,
        triggered_by: str = "cron",
    ) -> str:
        """
        Enregistre le début d'exécution d'un job.

        Args:
            job_name: Nom du job (ex: 'aggregate_demand')
            params: Paramètres du job (date cible, etc.)
            triggered_by: Déclencheur ('cron', 'admin')

        Returns:
            ID du log créé ("" si non enregistré)
        """
        start_time = datetime.now()
        job_info: Dict[str, Any] = {
            "start_time": start_time,
            "params": params or {},
            "triggered_by": triggered_by,
        }
        self._current_jobs[job_name] = job_info

        logger.info(f"[Monitor] Job started: {job_name} (triggered_by: {triggered_by})")

        supabase_client = self._get_supabase_client()
        if not supabase_client:
            return ""

        record = {
            "job_name": job_name,
            "start_time": start_time.isoformat(),
            "status": JobStatus.RUNNING.value,
            "config": json.dumps(params, default=str) if params else None,
            "triggered_by": triggered_by,
        }
        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: supabase_client.table(JOB_LOGS_TABLE).insert(record).execute(),
            )
            if response.data:
                log_id = response.data[0].get("id")
                job_info["log_id"] = log_id
                return str(log_id)
        except Exception as e:
            logger.error(f"Error logging job start to database: {e}")
        return ""

    async def log_job_end(
        self,
        job_name: str,
        status: JobStatus,
        stats: Optional[Dict[str, Any]] = None,
        errors: Optional[List[str]] = None,
    ) -> bool:
        """
        Enregistre la fin d'un job et alerte si le job a échoué ou majoritairement échoué.

        Args:
            job_name: Nom du job
            status: Statut final
            stats: Compteurs du rapport (records_success, records_failed...)
            errors: Messages d'erreur collectés

        Returns:
            True si le log a été écrit (ou si aucune base n'est configurée)
        """
        end_time = datetime.now()
        job_info = self._current_jobs.pop(job_name, {})
        start_time = job_info.get("start_time", end_time)
        duration = (end_time - start_time).total_seconds()

        stats = stats or {}
        errors = errors or []
        records_success = stats.get("records_success", 0)
        records_failed = stats.get("records_failed", len(errors))

        logger.info(
            f"[Monitor] Job ended: {job_name} (status: {status.value}, "
            f"duration: {duration:.2f}s, success: {records_success}, failed: {records_failed})"
        )

        if status == JobStatus.FAILED or (status == JobStatus.PARTIAL and records_failed > records_success):
            await self.send_alert(
                f"Job {job_name} ended with status {status.value}",
                AlertLevel.ERROR,
                {"job_name": job_name, "duration": round(duration, 2), "errors": errors},
            )

        supabase_client = self._get_supabase_client()
        if not supabase_client:
            return True

        update_data = {
            "end_time": end_time.isoformat(),
            "status": status.value,
            "records_success": records_success,
            "records_failed": records_failed,
            "stats": json.dumps(stats, default=str),
            "errors": json.dumps(errors) if errors else None,
        }
        log_id = job_info.get("log_id")
        try:
            loop = asyncio.get_running_loop()
            if log_id:
                await loop.run_in_executor(
                    None,
                    lambda: supabase_client.table(JOB_LOGS_TABLE).update(update_data).eq("id", log_id).execute(),
                )
            else:
                # log_job_start n'a pas pu écrire : on crée la ligne complète
                record = {
                    "job_name": job_name,
                    "start_time": start_time.isoformat(),
                    "triggered_by": job_info.get("triggered_by", "unknown"),
                    **update_data,
                }
                await loop.run_in_executor(
                    None,
                    lambda: supabase_client.table(JOB_LOGS_TABLE).insert(record).execute(),
                )
            return True
        except Exception as e:
            logger.error(f"Error logging job end to database: {e}")
            return False

    async def send_alert(
        self,
        message: str,
        level: AlertLevel = AlertLevel.ERROR,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Envoie une alerte : log systématique, Slack pour ERROR/CRITICAL si activé.
        """
        details = details or {}
        self._log_alert(message, level, details)

        if self.alert_slack_enabled and level in (AlertLevel.ERROR, AlertLevel.CRITICAL):
            return await self._send_slack_alert(message, level, details)
        return True

    def notify(
        self,
        message: str,
        level: AlertLevel = AlertLevel.ERROR,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Variante synchrone de `send_alert` pour le code hors boucle asyncio
        (journal d'audit appelé depuis le calcul de prix).
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self.send_alert(message, level, details))
            self._pending_alerts.add(task)
            task.add_done_callback(self._alert_done)
        else:
            asyncio.run(self.send_alert(message, level, details))

    def _alert_done(self, task: "asyncio.Task[bool]") -> None:
        self._pending_alerts.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error sending alert: {error}")

    def _log_alert(self, message: str, level: AlertLevel, details: Dict[str, Any]) -> None:
        if level == AlertLevel.CRITICAL:
            logger.critical(f"[Alert] {message} - Details: {details}")
        elif level == AlertLevel.ERROR:
            logger.error(f"[Alert] {message} - Details: {details}")
        elif level == AlertLevel.WARNING:
            logger.warning(f"[Alert] {message} - Details: {details}")
        else:
            logger.info(f"[Alert] {message} - Details: {details}")

    def _slack_payload(self, message: str, level: AlertLevel, details: Dict[str, Any]) -> Dict[str, Any]:
        color_map = {
            AlertLevel.INFO: "#36a64f",
            AlertLevel.WARNING: "#ff9500",
            AlertLevel.ERROR: "#ff0000",
            AlertLevel.CRITICAL: "#8b0000",
        }
        now = datetime.now()
        attachment: Dict[str, Any] = {
            "color": color_map.get(level, "#808080"),
            "title": message,
            "fields": [
                {"title": "Level", "value": level.value.upper(), "short": True},
                {"title": "Timestamp", "value": now.isoformat(), "short": True},
            ],
            "footer": "Dynamic Pricing Engine",
            "ts": int(now.timestamp()),
        }

        details_text = "\n".join(f"• {k}: {v}" for k, v in details.items() if k != "errors")
        if details_text:
            attachment["fields"].append({"title": "Details", "value": details_text, "short": False})

        errors = details.get("errors") or []
        if errors:
            errors_text = "\n".join(f"• {err}" for err in errors[:5])
            if len(errors) > 5:
                errors_text += f"\n... and {len(errors) - 5} more errors"
            attachment["fields"].append({"title": "Errors", "value": errors_text, "short": False})

        return {"text": f"Dynamic Pricing Alert: {level.value.upper()}", "attachments": [attachment]}

    async def _send_slack_alert(self, message: str, level: AlertLevel, details: Dict[str, Any]) -> bool:
        """
        Poste l'alerte sur le webhook Slack (`SLACK_WEBHOOK_URL`).
        """
        if not self.slack_webhook_url:
            logger.warning("Slack alert enabled but no webhook URL configured")
            return False

        payload = self._slack_payload(message, level, details)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.slack_webhook_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                ) as response:
                    if response.status == 200:
                        logger.info("Slack alert sent successfully")
                        return True
                    error_text = await response.text()
                    logger.error(f"Error sending Slack alert: {response.status} - {error_text}")
                    return False
        except aiohttp.ClientError as e:
            logger.error(f"Error sending Slack alert: {e}")
            return False


_monitor_instance: Optional[PipelineMonitor] = None


def get_pipeline_monitor(settings: Optional[Settings] = None) -> PipelineMonitor:
    """Instance globale du monitor."""
    global _monitor_instance
    if _monitor_instance is None:
        _monitor_instance = PipelineMonitor(settings)
    return _monitor_instance


async def log_job_start(
    job_name: str,
    params: Optional[Dict[str, Any]] = None,
    triggered_by: str = "cron",
) -> str:
    return await get_pipeline_monitor().log_job_start(job_name, params, triggered_by)


async def log_job_end(
    job_name: str,
    status: JobStatus,
    stats: Optional[Dict[str, Any]] = None,
    errors: Optional[List[str]] = None,
) -> bool:
    return await get_pipeline_monitor().log_job_end(job_name, status, stats, errors)


async def send_alert(
    message: str,
    level: AlertLevel = AlertLevel.ERROR,
    details: Optional[Dict[str, Any]] = None,
) -> bool:
    return await get_pipeline_monitor().send_alert(message, level, details)
