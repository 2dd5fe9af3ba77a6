import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud.firestore_v1 import Client as FirestoreClient

from bell_scheduler.utils.logging_config import get_store_logger

logger = get_store_logger()


def init_firestore(service_account_path: str) -> FirestoreClient:
    cred = credentials.Certificate(service_account_path)
    try:
        app = firebase_admin.get_app()
    except ValueError:
        app = firebase_admin.initialize_app(cred)
    logger.info(f"Firestore client initialized for project {app.project_id}")
    return firestore.client(app=app)
