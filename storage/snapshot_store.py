"""Last-known-good snapshot storage for fetched calendar events."""
import json
import logging
import os
import tempfile
import time
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import RawEvent

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _encode(events: List[RawEvent]) -> str:
    return json.dumps({
        'version': SNAPSHOT_VERSION,
        'saved_at': int(time.time()),
        'events': [event.to_dict() for event in events],
    }, ensure_ascii=False)


def _decode(body: str) -> List[RawEvent]:
    """
    Decode a snapshot document.

    Raises:
        ValueError: If the document is not a valid snapshot
    """
    data = json.loads(body)
    if not isinstance(data, dict) or 'events' not in data:
        raise ValueError("Snapshot document has no 'events' list")
    try:
        return [RawEvent.from_dict(item) for item in data['events']]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed snapshot event: {e}") from e


class LocalSnapshotStore:
    """Snapshot kept as a JSON file on local disk."""

    DEFAULT_PATH = os.path.join(tempfile.gettempdir(), 'calendar-snapshot.json')

    def __init__(self, path: Optional[str] = None):
        self.path = path or self.DEFAULT_PATH

    def save(self, events: List[RawEvent]) -> None:
        """
        Write the snapshot atomically.

        Args:
            events: Events of the last successful fetch
        """
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            f.write(_encode(events))
        os.replace(tmp_path, self.path)
        logger.info(f"Saved snapshot of {len(events)} events to {self.path}")

    def load(self) -> Optional[List[RawEvent]]:
        """
        Read the snapshot.

        Returns:
            List of RawEvent objects, or None if no snapshot exists
        """
        if not os.path.exists(self.path):
            return None
        with open(self.path, encoding='utf-8') as f:
            events = _decode(f.read())
        logger.info(f"Loaded snapshot of {len(events)} events from {self.path}")
        return events


class S3SnapshotStore:
    """Snapshot kept as a JSON object in S3, surviving Lambda cold starts."""

    def __init__(self, bucket: str, key: str = 'calendar-snapshot.json'):
        """
        Initialize S3 client.

        Args:
            bucket: Name of the S3 bucket
            key: Object key of the snapshot
        """
        self.bucket = bucket
        self.key = key
        self.s3 = boto3.client('s3')
        logger.info(f"Initialized S3SnapshotStore for s3://{bucket}/{key}")

    def save(self, events: List[RawEvent]) -> None:
        """
        Upload the snapshot.

        Raises:
            ClientError: If the upload fails
        """
        self.s3.put_object(
            Bucket=self.bucket,
            Key=self.key,
            Body=_encode(events).encode('utf-8'),
            ContentType='application/json',
        )
        logger.info(f"Saved snapshot of {len(events)} events to s3://{self.bucket}/{self.key}")

    def load(self) -> Optional[List[RawEvent]]:
        """
        Download the snapshot.

        Returns:
            List of RawEvent objects, or None if the object does not exist

        Raises:
            ClientError: For S3 errors other than a missing object
        """
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=self.key)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                return None
            logger.error(f"Error reading snapshot from S3: {e}")
            raise

        events = _decode(response['Body'].read().decode('utf-8'))
        logger.info(f"Loaded snapshot of {len(events)} events from s3://{self.bucket}/{self.key}")
        return events
