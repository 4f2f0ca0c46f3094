# utils/database.py
import datetime
import json
import logging
import os
import uuid
from typing import Any, Dict, List, Optional

from utils.env import env_int, env_str

logger = logging.getLogger(__name__)

APPLICATION_FIELDS = (
    "applicant_name",
    "loan_amount",
    "loan_type",
    "credit_score",
    "monthly_income",
    "employment_status",
    "loan_purpose",
    "interest_rate",
    "loan_term",
    "status",
    "user_id",
)


def _new_document(record: Dict[str, Any]) -> Dict[str, Any]:
    doc = {key: record.get(key) for key in APPLICATION_FIELDS}
    doc["status"] = doc.get("status") or "pending"
    doc["id"] = str(uuid.uuid4())
    doc["application_date"] = datetime.datetime.now(datetime.timezone.utc).isoformat()
    return doc


class JsonApplicationStore:
    """Application store used when MongoDB is not configured.

    Keeps applications in memory and, when `file_path` is given, mirrors
    them to a JSON file so they survive restarts.
    """

    def __init__(self, file_path: Optional[str] = None):
        self.file_path = file_path
        self.applications: Dict[str, Dict[str, Any]] = {}
        self.load_applications()

    def debug_backend(self) -> Dict[str, Any]:
        return {"backend": "json", "path": self.file_path}

    def load_applications(self) -> None:
        if not self.file_path:
            return
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                for doc in json.load(f):
                    self.applications[doc["id"]] = doc
        except FileNotFoundError:
            logger.info("%s not found; starting with an empty application list", self.file_path)
        except json.JSONDecodeError:
            logger.error("The file %s contains invalid JSON; ignoring it", self.file_path)

    def _save(self) -> None:
        if not self.file_path:
            return
        directory = os.path.dirname(self.file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.file_path, "w", encoding="utf-8") as f:
            json.dump(list(self.applications.values()), f, indent=2)

    def create_application(self, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        doc = _new_document(record)
        self.applications[doc["id"]] = doc
        self._save()
        return dict(doc)

    def list_applications(self, user_id: str) -> List[Dict[str, Any]]:
        if not user_id:
            return []
        docs = [dict(doc) for doc in self.applications.values() if doc.get("user_id") == user_id]
        return sorted(docs, key=lambda d: d.get("application_date") or "", reverse=True)

    def get_application(self, application_id: str) -> Optional[Dict[str, Any]]:
        doc = self.applications.get(application_id)
        return dict(doc) if doc else None

    def update_application_status(self, application_id: str, status: str) -> bool:
        doc = self.applications.get(application_id)
        if not doc:
            return False
        doc["status"] = status
        self._save()
        return True


class MongoApplicationStore:
    """MongoDB adapter for the `loan_applications` collection.

    Documents are keyed by a string uuid in `id` so records look the same as
    the JSON store's; Mongo's own `_id` never leaves this class.
    """

    def __init__(self, mongo_uri: str):
        from pymongo import DESCENDING, MongoClient

        self._descending = DESCENDING
        self.mongo_uri = mongo_uri
        self.client = MongoClient(
            mongo_uri,
            serverSelectionTimeoutMS=env_int("MONGO_SERVER_SELECTION_TIMEOUT_MS", 10000),
            connectTimeoutMS=env_int("MONGO_CONNECT_TIMEOUT_MS", 10000),
            socketTimeoutMS=env_int("MONGO_SOCKET_TIMEOUT_MS", 10000),
        )

        # Force a quick connectivity check so we can fall back if needed.
        self.client.admin.command("ping")

        db_name = env_str("MONGODB_DB_NAME", "loanwise")
        self.db = self.client[db_name]
        self.db_name = db_name
        self.applications = self.db["loan_applications"]

    def debug_backend(self) -> Dict[str, Any]:
        return {"backend": "mongo", "db": self.db_name}

    @staticmethod
    def _normalize(doc: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(doc)
        out.pop("_id", None)
        return out

    def create_application(self, record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        doc = _new_document(record)
        result = self.applications.insert_one(dict(doc))
        if not result.acknowledged:
            return None
        return doc

    def list_applications(self, user_id: str) -> List[Dict[str, Any]]:
        if not user_id:
            return []
        cursor = self.applications.find({"user_id": user_id}).sort("application_date", self._descending)
        return [self._normalize(doc) for doc in cursor]

    def get_application(self, application_id: str) -> Optional[Dict[str, Any]]:
        doc = self.applications.find_one({"id": application_id})
        return self._normalize(doc) if doc else None

    def update_application_status(self, application_id: str, status: str) -> bool:
        result = self.applications.update_one({"id": application_id}, {"$set": {"status": status}})
        return result.matched_count > 0


def build_application_store():
    """Pick Mongo when MONGODB_URI is set and reachable, otherwise the JSON store."""
    json_path = env_str("APPLICATIONS_JSON_PATH")
    mongo_uri = env_str("MONGODB_URI")
    if mongo_uri:
        try:
            return MongoApplicationStore(mongo_uri)
        except Exception as e:
            logger.warning("Failed to connect to MongoDB, falling back to JSON: %s", e)
            return JsonApplicationStore(json_path)
    return JsonApplicationStore(json_path)
