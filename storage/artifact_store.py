"""
Temporary artifact storage for Gemini Chat Exporter
Transcripts are materialized as JSON files in a temp directory and handed
to the download manager through file:// URLs
"""
import json
import uuid
from pathlib import Path
from typing import Optional

import aiofiles

from core.config import config
from core.exceptions import StorageError
from data.models import ArtifactRef, Transcript
from utils.helpers import sanitize_filename
from utils.logger import setup_logger


class ArtifactStore:
    """Writes and releases temporary transcript files"""

    def __init__(self, temp_dir: Optional[str] = None):
        self.logger = setup_logger("chat_exporter_artifacts", config.log_level, config.log_file)
        self.temp_dir = Path(temp_dir or config.temp_dir)
        self._ensure_temp_directory()

    def _ensure_temp_directory(self):
        try:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create temp directory {self.temp_dir}: {e}", component="artifacts")

    async def materialize(self, job_id: str, transcript: Transcript) -> ArtifactRef:
        """
        Write a transcript to a uniquely named temp file

        Args:
            job_id: Conversation id the transcript belongs to
            transcript: Extracted conversation

        Returns:
            ArtifactRef pointing at the written file
        """
        name = f"{sanitize_filename(job_id) or 'conversation'}_{uuid.uuid4().hex[:8]}.json"
        target = self.temp_dir / name
        temp_path = target.with_suffix('.tmp')

        payload = json.dumps(transcript.to_document(), indent=2, ensure_ascii=False)
        try:
            async with aiofiles.open(temp_path, 'w', encoding='utf-8') as f:
                await f.write(payload)
            temp_path.replace(target)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write transcript for {job_id}: {e}", component="artifacts")

        self.logger.debug(f"Materialized transcript for {job_id}: {target.name} ({len(payload):,} chars)")
        return ArtifactRef(path=str(target), jobId=job_id)

    def release(self, artifact: ArtifactRef):
        """Delete the file backing an artifact"""
        Path(artifact.path).unlink(missing_ok=True)
        self.logger.debug(f"Released artifact {Path(artifact.path).name}")

    def leftover_files(self):
        return sorted(self.temp_dir.glob('*.json'))
