#!/usr/bin/env python3
"""
Quiz Attempt Client - Main Entry Point

Opens one quiz attempt and follows it: logs its progress and every realtime
update until interrupted. Configure the backend in config.json or with the
SUPABASE_URL / SUPABASE_KEY environment variables.

Usage:
    python main.py <quiz_id> <attempt_id>
    python main.py --offline

Environment Variables:
    SUPABASE_URL: Project URL (overrides config.json)
    SUPABASE_KEY: API key (overrides config.json)
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from quiz_attempt.config_manager import ConfigManager
from quiz_attempt.errors import QuizAttemptError
from quiz_attempt.loader import AttemptLoader
from quiz_attempt.memory_store import InMemoryStore
from quiz_attempt.outbox import AnswerOutbox
from quiz_attempt.persistence import ProgressPersistence
from quiz_attempt.session import AttemptSession

logger = logging.getLogger("quiz_attempt.main")

OFFLINE_QUIZ_ID = "demo-quiz"
OFFLINE_QUESTIONS = [
    {"id": 1, "quizId": OFFLINE_QUIZ_ID, "order": 1, "isMultiple": False, "correct": ["1"],
     "title": "Which option is correct?",
     "options": [{"id": "1", "value": "This one"}, {"id": "2", "value": "Not this one"}]},
    {"id": 2, "quizId": OFFLINE_QUIZ_ID, "order": 2, "isMultiple": True, "correct": ["2", "3"],
     "title": "Select both correct options",
     "options": [{"id": "1", "value": "Wrong"}, {"id": "2", "value": "Right"},
                 {"id": "3", "value": "Also right"}]},
]


def load_config(config_path="config.json"):
    """Load configuration from a JSON file. A missing file means defaults."""
    config_path = Path(config_path)

    if not config_path.exists():
        print(f"⚠️ {config_path} not found, using default settings")
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        print(f"❌ Error: Invalid JSON in {config_path}: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ Error loading {config_path}: {e}")
        sys.exit(1)


def setup_logging_from_config(config):
    """Set up logging based on configuration."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, log_config.get('level', 'INFO').upper())
    log_directory = Path(log_config.get('log_directory', './logs/'))

    log_directory.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "quiz_attempt.log", encoding='utf-8')
        ]
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Follow a quiz attempt")
    parser.add_argument("quiz_id", nargs="?", help="Quiz identifier")
    parser.add_argument("attempt_id", nargs="?", type=int, help="Attempt identifier")
    parser.add_argument("--config", default="config.json", help="Path to the JSON config file")
    parser.add_argument("--offline", action="store_true",
                        help="Run a scripted attempt against an in-memory backend")
    args = parser.parse_args(argv)
    if not args.offline and (args.quiz_id is None or args.attempt_id is None):
        parser.error("quiz_id and attempt_id are required unless --offline is given")
    return args


def build_session(store, quiz_id, attempt_id, settings, on_exit=None):
    """Wire loader, persistence and session around a store."""
    outbox = AnswerOutbox(
        path=settings.outbox_path,
        base_delay=settings.outbox_base_delay,
        max_delay=settings.outbox_max_delay,
    )
    return AttemptSession(
        quiz_id,
        attempt_id,
        loader=AttemptLoader(store, leaderboard_size=settings.leaderboard_size),
        persistence=ProgressPersistence(store, outbox),
        settings=settings,
        on_exit=on_exit,
    )


async def run_offline(config_manager):
    """Answer a two-question quiz against the in-memory backend."""
    settings = config_manager.get_session_settings()
    store = InMemoryStore(base_xp=settings.base_xp, pass_threshold=settings.pass_threshold)
    store.add_questions(OFFLINE_QUIZ_ID, OFFLINE_QUESTIONS)
    row = await store.create_attempt(OFFLINE_QUIZ_ID, "offline-user")

    session = build_session(store, OFFLINE_QUIZ_ID, row["id"], settings)
    await session.start()
    try:
        session.select_answer("1")
        await session.handle_next_question()
        session.select_answer("2")
        session.select_answer("3")
        results = await session.handle_next_question()

        logger.info(session.get_status_summary())
        print(f"🏁 Score {results.score:.0f}% ({results.correct_answers}/{results.total_questions}), "
              f"{results.xp_gained} XP, {results.status}")
    finally:
        await session.close()


async def run_online(config_manager, quiz_id, attempt_id):
    """Follow an attempt on the configured backend until interrupted."""
    from quiz_attempt.supabase_store import connect

    settings = config_manager.get_session_settings()
    store = await connect(config_manager.get_backend_settings())

    session = build_session(store, quiz_id, attempt_id, settings)
    session.subscribe(lambda state: logger.debug(
        f"Attempt {attempt_id}: question {state.current_question_index + 1}, "
        f"{len(state.answers)} answered, {state.time_spent}s, {state.status.value}"
    ))

    await session.start()
    try:
        while True:
            await asyncio.sleep(settings.progress_sync_interval)
            if session.consume_completion():
                logger.info(f"Attempt {attempt_id} completed")
            logger.info(session.get_status_summary())
    finally:
        await session.close()


async def run_with_config(args):
    """Run the client with configuration."""
    config = load_config(args.config)
    setup_logging_from_config(config)

    config_manager = ConfigManager()
    config_manager.load_from_dict(config)
    logger.info(config_manager.get_settings_summary())

    if args.offline:
        await run_offline(config_manager)
    else:
        await run_online(config_manager, args.quiz_id, args.attempt_id)


if __name__ == "__main__":
    arguments = parse_args()
    try:
        print("📝 Starting quiz attempt client...")
        asyncio.run(run_with_config(arguments))
    except KeyboardInterrupt:
        print("\n👋 Stopped by user")
    except QuizAttemptError as e:
        print(f"❌ {e.user_message} ({e})")
        sys.exit(1)
