# backend/tests/unit/test_qr_link_service.py
import pytest
from urllib.parse import unquote

from queuebot.services.qr_link_service import QRLinkService, build_deep_link, build_message, extract_qr_context


def test_build_deep_link_strips_plus_and_encodes():
    assert build_deep_link("+15550001111", "Hi there & welcome") == (
        "https://wa.me/15550001111?text=Hi%20there%20%26%20welcome"
    )


def test_build_message_replaces_context_placeholders():
    template = "Hi {{organization_name}}! Joining via {{context}}."
    assert build_message("City Bank - Downtown", template) == "Hi City Bank - Downtown! Joining via City Bank - Downtown."


def test_build_message_defaults_and_reference():
    assert build_message("City Bank", None, "B-b1") == "Hello! I would like to join the queue.\n\nRef: B-b1"


@pytest.mark.parametrize("body, expected", [
    ("Hello! I would like to join the queue.\n\nRef: B-b-downtown", ("b-downtown", None)),
    ("Hello!\n\nRef: B-b-downtown D-d-loans", ("b-downtown", "d-loans")),
    ("Ref: B-5f0c8e2a-91d4-4c1e-b0a7-3e2d1c4b5a69 D-7a1b", ("5f0c8e2a-91d4-4c1e-b0a7-3e2d1c4b5a69", "7a1b")),
    ("Hello! I would like to join the queue.", (None, None)),
    ("", (None, None)),
    (None, (None, None)),
])
def test_extract_qr_context(body, expected):
    assert extract_qr_context(body) == expected


@pytest.mark.asyncio
async def test_links_for_organization(fake_db):
    links = await QRLinkService(fake_db).links_for_organization("org-1")

    assert [(link.scope, link.id) for link in links] == [
        ("organization", "org-1"),
        ("branch", "b-airport"),
        ("branch", "b-downtown"),
        ("department", "d-accounts"),
        ("department", "d-loans"),
    ]
    loans = links[-1]
    assert loans.name == "City Bank - Downtown - Loans"
    assert loans.url.startswith("https://wa.me/15550001111?text=")
    assert extract_qr_context(unquote(loans.url.split("text=", 1)[1])) == ("b-downtown", "d-loans")
    assert "Ref:" not in links[0].message


@pytest.mark.asyncio
async def test_links_require_business_number(fake_db):
    fake_db.add_organization("org-2", "No Number Ltd")
    service = QRLinkService(fake_db)

    assert await service.links_for_organization("org-2") is None
    assert await service.links_for_organization("missing") is None
