"""
Firebase Admin SDK bootstrap (Realtime Database store + ID token verification)
"""
import logging
import os

import firebase_admin
from firebase_admin import credentials

from subtracker.config import get_settings

logger = logging.getLogger(__name__)

_firebase_app = None


def get_firebase_app():
    """
    Lazy initialization of Firebase Admin SDK

    Credentials: FIREBASE_CREDENTIALS (service account JSON) если файл
    существует, иначе Application Default Credentials.
    """
    global _firebase_app
    if _firebase_app is not None:
        return _firebase_app

    settings = get_settings()
    options = {}
    if settings.FIREBASE_DATABASE_URL:
        options["databaseURL"] = settings.FIREBASE_DATABASE_URL

    # Check if already initialized
    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    cred_path = settings.FIREBASE_CREDENTIALS
    if cred_path and os.path.exists(cred_path):
        cred = credentials.Certificate(cred_path)
    else:
        logger.info("FIREBASE_CREDENTIALS not set, using application default credentials")
        cred = credentials.ApplicationDefault()

    _firebase_app = firebase_admin.initialize_app(cred, options)
    return _firebase_app
