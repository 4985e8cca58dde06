"""Background worker for processing optimization jobs from a queue."""

from __future__ import annotations

import json
import logging
import signal
import time
import urllib.request
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

try:
    import redis
    HAS_REDIS = True
except ImportError:
    HAS_REDIS = False

try:
    import boto3
    HAS_BOTO = True
except ImportError:
    HAS_BOTO = False

from gltf_optimizer.config import ServiceSettings, merge_output_config
from gltf_optimizer.document import TrimeshIO
from gltf_optimizer.lod import LODGenerator, levels_for_complexity, save_lods
from gltf_optimizer.output import resolve_outputs, write_outputs
from gltf_optimizer.pipeline import Pipeline
from gltf_optimizer.stages import default_stages, parse_stages
from gltf_optimizer.transforms import TrimeshEngine

logger = logging.getLogger(__name__)


class Worker:
    """Background worker that processes jobs from a queue.

    Supports:
    - Redis (redis://host:port/db)
    - AWS SQS (sqs://queue-name or full URL)

    Job payload:
        {"job_id": "...", "type": "optimize",
         "input": {"s3_key" | "local_path" | "url": "..."},
         "params": {"lod": true, "format": "both", "stages": [...]},
         "webhook_url": "..."}

    Example:
        worker = Worker("redis://localhost:6379/0")
        worker.run()
    """

    def __init__(
        self,
        queue_url: str,
        settings: Optional[ServiceSettings] = None,
    ) -> None:
        """Initialize worker.

        Args:
            queue_url: Queue connection URL
            settings: Directories, bucket and queue name (default: from environment)
        """
        self.queue_url = queue_url
        self.settings = settings or ServiceSettings.from_env()
        self.upload_dir = self.settings.upload_dir
        self.output_dir = self.settings.output_dir
        self.s3_bucket = self.settings.s3_bucket

        # Parse queue URL
        parsed = urlparse(queue_url)
        self.queue_type = parsed.scheme

        if self.queue_type == "redis":
            if not HAS_REDIS:
                raise ImportError("redis package required for Redis queue")
            self.redis = redis.from_url(queue_url)
            self.queue_name = self.settings.queue_name
        elif self.queue_type == "sqs":
            if not HAS_BOTO:
                raise ImportError("boto3 package required for SQS queue")
            self.sqs = boto3.client("sqs")
            self.queue_name = queue_url
        else:
            raise ValueError(f"Unsupported queue type: {self.queue_type}")

        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        # S3 client for file transfer
        if self.s3_bucket and HAS_BOTO:
            self.s3 = boto3.client("s3")
        else:
            self.s3 = None

        self.io = TrimeshIO()
        self.engine = TrimeshEngine(self.io)
        self.running = False

    def run(self) -> None:
        """Run the worker loop."""
        self.running = True

        def shutdown(signum, frame):
            logger.info("Shutting down worker...")
            self.running = False

        signal.signal(signal.SIGINT, shutdown)
        signal.signal(signal.SIGTERM, shutdown)

        logger.info("Worker started, listening to %s", self.queue_url)

        while self.running:
            try:
                job = self._get_job()
                if job:
                    self.process_job(job)
                else:
                    time.sleep(1)
            except Exception:
                logger.exception("Error polling queue")
                time.sleep(5)

    def _get_job(self) -> Optional[dict]:
        """Get next job from queue."""
        if self.queue_type == "redis":
            # Blocking pop with timeout
            result = self.redis.blpop(self.queue_name, timeout=5)
            if result:
                _, job_data = result
                return json.loads(job_data)

        elif self.queue_type == "sqs":
            response = self.sqs.receive_message(
                QueueUrl=self.queue_name,
                MaxNumberOfMessages=1,
                WaitTimeSeconds=5,
            )
            messages = response.get("Messages", [])
            if messages:
                msg = messages[0]
                self.sqs.delete_message(
                    QueueUrl=self.queue_name,
                    ReceiptHandle=msg["ReceiptHandle"],
                )
                return json.loads(msg["Body"])

        return None

    def process_job(self, job: dict) -> None:
        """Process a single job; failures are reported, not raised."""
        job_id = job.get("job_id", "unknown")
        logger.info("Processing job %s", job_id)

        try:
            job_type = job.get("type", "optimize")

            if job_type == "optimize":
                result = self._process_optimize_job(job)
            elif job_type == "analyze":
                result = self._process_analyze_job(job)
            else:
                raise ValueError(f"Unknown job type: {job_type}")

        except Exception as e:
            logger.error("Job %s failed: %s", job_id, e)
            self._report(job, {"status": "failed", "error": str(e)})
            return

        logger.info("Job %s completed successfully", job_id)
        self._report(job, {"status": "completed", "result": result})

    def _process_optimize_job(self, job: dict) -> dict:
        """Optimize one file with the job's stages and output options."""
        job_id = job["job_id"]
        params = job.get("params", {})

        stages = parse_stages(params["stages"]) if "stages" in params else default_stages()
        config = merge_output_config(
            {key: params[key] for key in ("format", "naming", "directory") if key in params}
        )
        pipeline = Pipeline(self.engine)
        pipeline.validate(stages)

        input_path = self._download_input(job)
        output_dir = self.output_dir / job_id
        try:
            document = self.io.read(input_path)
            pipeline.run(document, stages)

            targets = resolve_outputs(input_path, output_dir, ".", config)
            report = write_outputs(self.io, document, targets)
            report.raise_for_failures()
            outputs = list(report.written)

            if params.get("lod"):
                index, _ = save_lods(
                    LODGenerator(self.io, self.engine).iter_variants(document, params.get("levels")),
                    self.io,
                    output_dir,
                    input_path.stem,
                )
                outputs += [output_dir / entry.path for entry in index.levels]
        finally:
            if self._is_download(job):
                input_path.unlink(missing_ok=True)

        return {"outputs": [self._upload_output(path, job) for path in outputs]}

    def _process_analyze_job(self, job: dict) -> dict:
        """Report complexity and suggested LOD levels."""
        input_path = self._download_input(job)
        try:
            metrics = self.io.query_complexity(self.io.read(input_path))
        finally:
            if self._is_download(job):
                input_path.unlink(missing_ok=True)

        return {
            "vertex_count": metrics.vertex_count,
            "triangle_count": metrics.triangle_count,
            "suggested_lods": levels_for_complexity(metrics),
        }

    @staticmethod
    def _is_download(job: dict) -> bool:
        return "local_path" not in job.get("input", {})

    def _download_input(self, job: dict) -> Path:
        """Download input file from S3 or use local path."""
        input_info = job.get("input", {})

        if "s3_key" in input_info and self.s3:
            local_path = self.upload_dir / Path(input_info["s3_key"]).name
            self.s3.download_file(self.s3_bucket, input_info["s3_key"], str(local_path))
            return local_path

        elif "local_path" in input_info:
            return Path(input_info["local_path"])

        elif "url" in input_info:
            local_path = self.upload_dir / Path(urlparse(input_info["url"]).path).name
            urllib.request.urlretrieve(input_info["url"], local_path)
            return local_path

        raise ValueError("No input source specified in job")

    def _upload_output(self, local_path: Path, job: dict) -> str:
        """Upload output file to S3 or return local path."""
        if self.s3 and self.s3_bucket:
            s3_key = f"outputs/{job['job_id']}/{local_path.name}"
            self.s3.upload_file(str(local_path), self.s3_bucket, s3_key)
            return f"s3://{self.s3_bucket}/{s3_key}"

        return str(local_path)

    def _report(self, job: dict, payload: dict) -> None:
        """Report job outcome by webhook and, for Redis queues, pub/sub."""
        job_id = job.get("job_id", "unknown")
        webhook_url = job.get("webhook_url")
        if webhook_url:
            data = json.dumps({"job_id": job_id, **payload})
            req = urllib.request.Request(
                webhook_url,
                data=data.encode(),
                headers={"Content-Type": "application/json"},
            )
            try:
                urllib.request.urlopen(req)
            except OSError as e:
                logger.warning("Webhook for job %s failed: %s", job_id, e)

        if self.queue_type == "redis":
            self.redis.publish(f"gltfopt:results:{job_id}", json.dumps(payload))


def run_worker(queue_url: str) -> None:
    """Run the worker."""
    worker = Worker(queue_url)
    worker.run()
