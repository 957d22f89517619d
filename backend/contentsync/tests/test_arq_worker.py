"""Tests for the full-catalog ARQ job.

WHAT: The job syncs every family within the shop's plan limits
WHY: The job runs unattended; a free shop must never pull families its
     plan excludes

REFERENCES:
    - contentsync/workers/arq_worker.py
"""

import asyncio

import pytest

from contentsync.models import Article, Collection, Menu, Page
from contentsync.services import shop_session_service
from contentsync.services.shop_session_service import store_shop_session
from contentsync.workers import arq_worker

FREE_SHOP = "free-shop.myshopify.com"


@pytest.fixture
def worker_env(monkeypatch, session_factory, gateway):
    monkeypatch.setattr(arq_worker, "SessionLocal", session_factory)
    monkeypatch.setattr(shop_session_service, "get_gateway_for_shop", lambda db, shop: gateway)
    return gateway


def test_full_sync_job_respects_free_plan(worker_env, test_db_session):
    store_shop_session(test_db_session, FREE_SHOP, "shpat_free", plan="free")
    worker_env.add_collection(1)
    worker_env.add_article(7)
    worker_env.add_menu(8)
    worker_env.add_page(9)

    result = asyncio.run(arq_worker.process_full_sync_job({}, FREE_SHOP))

    assert result["success"] is True
    assert result["content"]["collections"] == 1
    assert (result["content"]["articles"], result["content"]["menus"]) == (0, 0)
    assert result["background"]["total"] == 0
    assert worker_env.calls_for("getArticleIds") == []
    assert worker_env.calls_for("getMenuIds") == []
    assert worker_env.calls_for("getPages") == []
    test_db_session.expire_all()
    assert test_db_session.query(Collection).count() == 1
    assert test_db_session.query(Article).count() == 0
    assert test_db_session.query(Menu).count() == 0
    assert test_db_session.query(Page).count() == 0


def test_full_sync_job_for_unknown_shop_fails_cleanly(worker_env):
    result = asyncio.run(arq_worker.process_full_sync_job({}, "unknown.myshopify.com"))

    assert result == {"success": False, "error": "Shop not installed: unknown.myshopify.com"}
