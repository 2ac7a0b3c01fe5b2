"""Tests for evidence attribution (term normalization, anchor search, orchestration)."""

from app.schemas.outline import ConceptCandidate, ModuleCandidate, StructuredOutline
from app.services.evidence import (
    MAX_QUOTE_CHARS,
    AiAuthored,
    EvidenceIndex,
    TextAnchored,
    attach_evidence,
    evidence_counts,
    find_evidence_anchor,
    normalize_term,
    split_term_tokens,
    to_definition,
)

HAZARD_TEXT = "Data hazards occur when instructions access the same register.\nControl hazards stall the pipeline."
REGISTER_TEXT = "Intro line\nA register file stores CPU values.\nNext line here."


def _outline(*modules: tuple[str, list[dict]]) -> StructuredOutline:
    return StructuredOutline.from_untrusted(
        {
            "courseName": "Computer Organization",
            "lectureTitle": "Lecture 3",
            "modules": [{"title": title, "concepts": concepts} for title, concepts in modules],
        }
    )


class TestNormalizeTerm:
    def test_trims_strings(self):
        assert normalize_term("  register file \n") == "register file"

    def test_blank_is_empty(self):
        assert normalize_term("   ") == ""

    def test_non_strings_are_empty(self):
        for value in (None, 42, ["x"], {"name": "x"}, 3.5):
            assert normalize_term(value) == ""


class TestSplitTermTokens:
    def test_cjk_compound_without_separators_is_one_token(self):
        assert split_term_tokens("数据冒险与控制冒险") == ["数据冒险与控制冒险"]

    def test_mixed_separators_keep_order(self):
        assert split_term_tokens("CPU (中央处理器)/ALU-单元") == ["CPU", "中央处理器", "ALU", "单元"]

    def test_full_width_punctuation(self):
        assert split_term_tokens("流水线：冒险，停顿；转发") == ["流水线", "冒险", "停顿", "转发"]

    def test_short_tokens_dropped(self):
        assert split_term_tokens("a-b cd / e") == ["cd"]


class TestFindEvidenceAnchor:
    def test_register_file_snaps_to_line(self):
        anchor = find_evidence_anchor(REGISTER_TEXT, "register file")

        assert anchor == TextAnchored(quote="A register file stores CPU values.", start=11, end=45)
        assert REGISTER_TEXT[anchor.start : anchor.end] == anchor.quote

    def test_case_insensitive(self):
        assert find_evidence_anchor(REGISTER_TEXT, "REGISTER File") == find_evidence_anchor(
            REGISTER_TEXT, "register file"
        )

    def test_term_is_trimmed_before_search(self):
        assert find_evidence_anchor(REGISTER_TEXT, "  register file  ").quote == "A register file stores CPU values."

    def test_cjk_term_absent_from_english_text(self):
        assert find_evidence_anchor(HAZARD_TEXT, "数据冒险") is None

    def test_cjk_term_present(self):
        text = "第三讲 流水线\n数据冒险：后一条指令依赖前一条指令的结果。\n控制冒险由分支引起。"
        anchor = find_evidence_anchor(text, "数据冒险")
        assert anchor.quote == "数据冒险：后一条指令依赖前一条指令的结果。"

    def test_token_fallback_uses_first_token_in_term_order(self):
        text = "The pipeline has five stages.\nHazards cause stalls."
        anchor = find_evidence_anchor(text, "pipeline hazards and stalls")

        assert anchor.quote == "The pipeline has five stages."
        assert "Hazards" not in anchor.quote

    def test_whole_term_beats_tokens(self):
        text = "pipeline basics\nsomething else\nthe pipeline hazards and stalls section"
        anchor = find_evidence_anchor(text, "pipeline hazards and stalls")
        assert anchor.quote == "the pipeline hazards and stalls section"

    def test_token_fallback_skips_unmatched_tokens(self):
        text = "Forwarding removes most stalls."
        anchor = find_evidence_anchor(text, "bypass/forwarding")
        assert anchor.quote == "Forwarding removes most stalls."

    def test_short_terms_never_anchor(self):
        text = "a b c a\n a"
        for term in ("a", " ", "", "  a  ", "\n"):
            assert find_evidence_anchor(text, term) is None

    def test_non_string_inputs(self):
        assert find_evidence_anchor(REGISTER_TEXT, 42) is None
        assert find_evidence_anchor(None, "register") is None

    def test_first_occurrence_wins(self):
        text = "cache line one\ncache line two"
        assert find_evidence_anchor(text, "cache").quote == "cache line one"

    def test_window_without_newlines(self):
        text = "a" * 300 + "register file" + "b" * 300
        anchor = find_evidence_anchor(text, "register file")

        assert (anchor.start, anchor.end) == (60, 573)
        assert anchor.quote == text[60:573]

    def test_newline_outside_window_is_ignored(self):
        text = "x\n" + "a" * 300 + "register file" + "b" * 300 + "\ny"
        anchor = find_evidence_anchor(text, "register file")
        assert "\n" not in anchor.quote
        assert anchor.start == 302 - 240

    def test_tight_window_retry(self):
        term = "z" * 150
        text = "a" * 500 + term + "b" * 500
        anchor = find_evidence_anchor(text, term)

        assert (anchor.start, anchor.end) == (320, 870)
        assert anchor.quote == text[320:870]

    def test_hard_truncation_keeps_window_bounds(self):
        term = "z" * 300
        text = "a" * 500 + term + "b" * 500
        anchor = find_evidence_anchor(text, term)

        assert len(anchor.quote) == MAX_QUOTE_CHARS
        assert anchor.quote == text[320:920]
        assert (anchor.start, anchor.end) == (320, 1020)

    def test_hard_truncation_keeps_long_match(self):
        text = "a" * 200 + "Z" * 450 + "b" * 300
        term = text[200:650]
        anchor = find_evidence_anchor(text, term)

        assert len(anchor.quote) == MAX_QUOTE_CHARS
        assert term in anchor.quote
        assert anchor.quote == text[50:650]
        assert (anchor.start, anchor.end) == (20, 870)

    def test_long_substrings_stay_inside_quote(self):
        text = ("x" * 97 + "\n") * 3 + "".join(chr(ord("a") + i % 26) for i in range(900)) + "\ntail"
        for i in range(300, 1200, 90):
            for length in (300, 450, 590):
                s = text[i : i + length]
                if "\n" in s:
                    continue
                anchor = find_evidence_anchor(text, s.upper())
                assert s.lower() in anchor.quote.lower()
                assert len(anchor.quote) <= MAX_QUOTE_CHARS
                assert 0 <= anchor.start <= anchor.end <= len(text)

    def test_offsets_survive_length_changing_lowercase(self):
        text = "İstanbul register file\nnext"
        anchor = find_evidence_anchor(text, "REGISTER FILE")

        assert anchor == TextAnchored(quote="İstanbul register file", start=0, end=22)

    def test_reusing_index(self):
        index = EvidenceIndex(REGISTER_TEXT)
        assert find_evidence_anchor("ignored", "register file", index=index).start == 11

    def test_every_substring_anchors_within_bounds(self):
        text = HAZARD_TEXT + "\n" + REGISTER_TEXT + "\n冒险与转发：流水线的核心问题"
        for i in range(0, len(text), 3):
            for length in (2, 5, 11, 40):
                s = text[i : i + length]
                if len(s.strip()) < 2:
                    continue
                for variant in (s, s.upper(), s.lower()):
                    anchor = find_evidence_anchor(text, variant)
                    assert anchor is not None, variant
                    assert s.strip().lower() in anchor.quote.lower()
                    assert 0 <= anchor.start <= anchor.end <= len(text)
                    assert len(anchor.quote) <= MAX_QUOTE_CHARS

    def test_deterministic(self):
        results = {find_evidence_anchor(HAZARD_TEXT, "hazards stall") for _ in range(5)}
        assert len(results) == 1


class TestToDefinition:
    def test_pdf_definition_serializes_quote_and_location(self):
        definition = to_definition(TextAnchored(quote="q text", start=3, end=9))
        assert definition.model_dump(by_alias=True, exclude_none=True) == {
            "text": "q text",
            "source": "pdf",
            "sourceQuote": "q text",
            "sourceLocation": {"start": 3, "end": 9},
        }

    def test_ai_definition_omits_source_fields(self):
        definition = to_definition(AiAuthored(text="one-liner"))
        assert definition.model_dump(by_alias=True, exclude_none=True) == {"text": "one-liner", "source": "ai"}


class TestAttachEvidence:
    def test_cjk_concept_falls_back_to_description(self):
        outline = _outline(("冒险", [{"name": "数据冒险", "description": "后一条指令依赖前一条指令"}]))
        concept = attach_evidence(HAZARD_TEXT, outline).modules[0].concepts[0]

        assert concept.definition.source == "ai"
        assert concept.definition.text == "后一条指令依赖前一条指令"
        assert concept.definition.source_quote is None
        assert concept.definition.source_location is None

    def test_anchored_concept_uses_quote_as_text(self):
        outline = _outline(("Storage", [{"name": "register file", "description": "fast storage"}]))
        concept = attach_evidence(REGISTER_TEXT, outline).modules[0].concepts[0]

        assert concept.description == "fast storage"
        assert concept.definition.source == "pdf"
        assert concept.definition.text == "A register file stores CPU values."
        assert concept.definition.source_quote == concept.definition.text
        assert concept.definition.source_location.start == 11
        assert concept.definition.source_location.end == 45

    def test_missing_description_without_anchor(self):
        outline = _outline(("M", [{"name": "quantum tunnelling"}]))
        concept = attach_evidence(HAZARD_TEXT, outline).modules[0].concepts[0]

        assert concept.definition.source == "ai"
        assert concept.definition.text == ""

    def test_no_matching_term_uses_description(self):
        outline = _outline(("M", [{"name": "branch predictor", "description": "guesses branch outcomes"}]))
        concept = attach_evidence(HAZARD_TEXT, outline).modules[0].concepts[0]
        assert concept.definition.model_dump(exclude_none=True) == {
            "text": "guesses branch outcomes",
            "source": "ai",
        }

    def test_malformed_concepts_do_not_raise(self):
        outline = _outline(("M", [{"name": 42, "description": ["x"]}, {"name": None}, {}]))
        concepts = attach_evidence(HAZARD_TEXT, outline).modules[0].concepts

        assert [(c.name, c.description, c.definition.source, c.definition.text) for c in concepts] == [
            ("", "", "ai", ""),
            ("", "", "ai", ""),
            ("", "", "ai", ""),
        ]

    def test_short_name_is_not_searched(self):
        outline = _outline(("M", [{"name": "a", "description": "single letter"}]))
        concept = attach_evidence("a a a", outline).modules[0].concepts[0]
        assert concept.definition.source == "ai"

    def test_order_and_titles_preserved(self):
        outline = _outline(
            ("Hazards", [{"name": "Control hazards"}, {"name": "Data hazards"}, {"name": "nothing here"}]),
            ("Empty", []),
            ("Storage", [{"name": "register"}]),
        )
        annotated = attach_evidence(HAZARD_TEXT, outline)

        assert annotated.course_name == "Computer Organization"
        assert annotated.lecture_title == "Lecture 3"
        assert [m.title for m in annotated.modules] == ["Hazards", "Empty", "Storage"]
        assert [c.name for c in annotated.modules[0].concepts] == ["Control hazards", "Data hazards", "nothing here"]
        assert evidence_counts(annotated) == {"pdf": 3, "ai": 1}

    def test_input_outline_not_mutated(self):
        outline = _outline(("M", [{"name": "  register file ", "description": " d "}]))
        before = outline.model_dump()
        attach_evidence(REGISTER_TEXT, outline)
        assert outline.model_dump() == before

    def test_deterministic_output(self):
        outline = StructuredOutline(
            course_name="C",
            lecture_title="L",
            modules=[
                ModuleCandidate(
                    title="M",
                    concepts=[
                        ConceptCandidate(name="pipeline hazards", description="d1"),
                        ConceptCandidate(name="数据冒险", description="d2"),
                    ],
                )
            ],
        )
        first = attach_evidence(HAZARD_TEXT, outline).model_dump_json(by_alias=True)
        second = attach_evidence(HAZARD_TEXT, outline).model_dump_json(by_alias=True)
        assert first == second
