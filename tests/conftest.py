"""テスト共通のフィクスチャ."""

from __future__ import annotations

from typing import Any

import pytest

from udio_prompt_crafter.core.taxonomy import Taxonomy, parse_taxonomy

TAXONOMY_DATA: dict[str, Any] = {
    "taxonomy": [
        {
            "id": "genre",
            "name": "Genre",
            "type": "tags",
            "tags": [
                {"id": "g_synthwave", "label": "Synthwave", "description": "", "suggests": ["g_electro", "m_dreamy"]},
                {"id": "g_electro", "label": "Electro", "description": ""},
                {"id": "g_trance", "label": "Trance", "description": ""},
            ],
        },
        {
            "id": "mood",
            "name": "Mood",
            "type": "tags",
            "tags": [
                {"id": "m_dreamy", "label": "Dreamy", "description": ""},
                {"id": "m_dark", "label": "Dark", "description": "", "conflictsWith": ["m_euphoric"]},
                {"id": "m_euphoric", "label": "Euphoric", "description": ""},
            ],
        },
        {
            "id": "vocals",
            "name": "Vocals",
            "type": "tags",
            "tags": [
                {
                    "id": "v_instrumental",
                    "label": "Instrumental",
                    "description": "No vocals.",
                    "conflictsWith": ["v_female", "v_male"],
                },
                {"id": "v_female", "label": "Female Vocals", "description": ""},
                {"id": "v_male", "label": "Male Vocals", "description": ""},
            ],
        },
        {"id": "lyrics", "name": "Lyrics", "type": "text", "tags": []},
    ]
}


@pytest.fixture
def taxonomy_data() -> dict[str, Any]:
    return TAXONOMY_DATA


@pytest.fixture
def taxonomy() -> Taxonomy:
    return parse_taxonomy(TAXONOMY_DATA)
