import json

import pytest

from app_maker.models import Epic, Story, story_sort_key
from app_maker.pipeline import (
    EpicsExtractionError,
    extract_mvp_epics,
    serialize_mvp_epics,
    to_mvp_epics,
)

PO_REPLY = (
    "Planning finished, see below.\n\n"
    "```json\n"
    '{"mvp_epics":[{"epic_number":1,"name":"Auth","description":"...","priority":"P0",'
    '"estimated_days":3,"file_path":"epic1-auth-stories.md","stories":[{"story_number":"1.1",'
    '"title":"Login","description":"","priority":"P0","estimated_days":1,"depends":"",'
    '"techs":""}]}]}\n'
    "```\n"
)


def test_extracts_epics_and_stories():
    epics = extract_mvp_epics(PO_REPLY)

    assert len(epics) == 1
    epic = epics[0]
    assert epic.epic_number == 1
    assert epic.priority == "P0"
    assert epic.file_path == "epic1-auth-stories.md"
    assert [s.story_number for s in epic.stories] == ["1.1"]
    assert epic.stories[0].title == "Login"


def test_numeric_story_numbers_and_list_fields_are_normalised():
    document = {
        "mvp_epics": [
            {
                "epic_number": 2,
                "name": "Billing",
                "stories": [
                    {"story_number": 2.1, "title": "Invoice", "depends": ["1.1", "1.2"]},
                ],
            }
        ]
    }
    epics = extract_mvp_epics(f"```json\n{json.dumps(document)}\n```")

    story = epics[0].stories[0]
    assert story.story_number == "2.1"
    assert story.depends == "1.1, 1.2"


@pytest.mark.parametrize(
    ("content", "reason"),
    [
        ("No block here", "no json code block"),
        ("```json\n{\"mvp_epics\": []", "not closed"),
        ("```json\n{not json}\n```", "invalid json"),
        ('```json\n{"mvp_epics": []}\n```', "empty"),
        (
            '```json\n{"mvp_epics": [{"epic_number": 1, "name": "A", "priority": "P9"}]}\n```',
            "invalid",
        ),
    ],
)
def test_rejects_bad_documents(content, reason):
    with pytest.raises(EpicsExtractionError, match=reason):
        extract_mvp_epics(content)


def test_stored_rows_serialise_back_to_the_same_document():
    epic = Epic(
        id="EPIC00000001",
        epic_number=1,
        name="Auth",
        description="...",
        priority="P0",
        estimated_days=3,
        file_path="epic1-auth-stories.md",
    )
    epic.stories = [
        Story(
            id="STORY00000002",
            story_number="1.10",
            title="Logout",
            description="",
            priority="P0",
            estimated_days=1,
            depends="",
            techs="",
            file_path="epic1-auth-stories.md",
        ),
        Story(
            id="STORY00000001",
            story_number="1.2",
            title="Login",
            description="",
            priority="P0",
            estimated_days=1,
            depends="",
            techs="",
            file_path="epic1-auth-stories.md",
        ),
    ]

    assert [s.story_number for s in to_mvp_epics([epic])[0].stories] == ["1.2", "1.10"]
    reparsed = extract_mvp_epics(serialize_mvp_epics([epic]))
    assert reparsed == to_mvp_epics([epic])


def test_story_sort_key_orders_numerically():
    numbers = ["1.10", "1.2", "2.1", "1.9"]
    assert sorted(numbers, key=story_sort_key) == ["1.2", "1.9", "1.10", "2.1"]
