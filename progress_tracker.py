import json
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from core.config import config
from data.models import JobResult
from utils.logger import setup_logger


class ProgressTracker:
    def __init__(self, progress_file: Optional[str] = None):
        self.logger = setup_logger("chat_exporter_progress", config.log_level, config.log_file)
        self.progress_file = Path(progress_file or config.progress_file)
        self.ensure_progress_file()

    def ensure_progress_file(self):
        if not self.progress_file.exists():
            self.progress_file.parent.mkdir(parents=True, exist_ok=True)
            self.save_progress({"exported_conversation_ids": [], "total_exported": 0})

    def load_progress(self):
        try:
            with open(self.progress_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Error loading progress: {e}")
            return {"exported_conversation_ids": [], "total_exported": 0}

        if "exported_conversation_ids" not in data:
            data["exported_conversation_ids"] = []
        data["total_exported"] = len(data["exported_conversation_ids"])
        return data

    def save_progress(self, data):
        try:
            with open(self.progress_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            self.logger.error(f"Error saving progress: {e}")

    def add_exported_conversation(self, conversation_id: str):
        progress = self.load_progress()
        if conversation_id not in progress["exported_conversation_ids"]:
            progress["exported_conversation_ids"].append(conversation_id)
            progress["total_exported"] = len(progress["exported_conversation_ids"])
            progress["last_exported_at"] = datetime.now().isoformat()
            self.save_progress(progress)

    def record_result(self, result: JobResult):
        """Result callback for the orchestrator; only completed exports are remembered"""
        if result.is_completed:
            self.add_exported_conversation(result.id)

    def filter_pending(self, conversation_ids: Iterable[str]) -> List[str]:
        exported = set(self.load_progress()["exported_conversation_ids"])
        return [cid for cid in conversation_ids if cid not in exported]

    def get_stats(self):
        progress = self.load_progress()
        return {
            "total_exported": progress["total_exported"],
            "last_exported_at": progress.get("last_exported_at")
        }
