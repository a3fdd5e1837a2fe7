#!/usr/bin/env python3
"""
Celery worker entry point for the quiz proctor backend.

    celery -A celery_worker worker -Q maintenance,notifications --beat
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from quizproctor.core.celery_app import celery_app  # noqa: E402

if __name__ == '__main__':
    celery_app.start()
