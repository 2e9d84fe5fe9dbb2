import json

from compliance_agent.agent.stages.obligation import (
    MANUAL_REVIEW_DISCLAIMER,
    NO_CONTEXT,
    format_context,
    parse_answer,
)
from compliance_agent.schemas import RetrievalChunk, RetrievalResult


def _retrieval() -> RetrievalResult:
    return RetrievalResult(
        query="reportes",
        strategy="local",
        chunks=[
            RetrievalChunk(
                id="ley-19913-4",
                document_id="ley-19913",
                title="Ley 19.913",
                excerpt="Los sujetos obligados deberán informar operaciones sospechosas.",
                score=0.81,
                attributes={"position": 4, "rank": 1},
            ),
            RetrievalChunk(
                id="ley-21521-0",
                document_id="ley-21521",
                title="Ley 21.521",
                excerpt="Las plataformas de financiamiento colectivo deberán inscribirse.",
                score=0.52,
            ),
        ],
    )


def _obligation(document_id: str, reference: str, **source: object) -> dict:
    return {
        "id": f"obl-{document_id}",
        "description": "Reportar operaciones sospechosas a la UAF",
        "source": {"documentId": document_id, "reference": reference, **source},
        "rationale": "Sujeto obligado",
        "priority": "high",
    }


def test_non_json_output_degrades_to_empty_answer_with_disclaimers() -> None:
    answer = parse_answer("Lo siento, no puedo responder.", _retrieval())

    assert answer.obligations == []
    assert answer.disclaimers
    assert answer.disclaimers[0] == MANUAL_REVIEW_DISCLAIMER


def test_schema_invalid_output_degrades() -> None:
    raw = json.dumps({"summary": "s", "obligations": [{"id": "x", "priority": "urgent"}]})

    answer = parse_answer(raw, _retrieval())

    assert answer.obligations == []
    assert MANUAL_REVIEW_DISCLAIMER in answer.disclaimers


def test_missing_source_fields_are_backfilled_from_matching_chunk() -> None:
    raw = json.dumps({"summary": "Una obligación", "obligations": [_obligation("ley-19913", "Art. 3")]})

    answer = parse_answer(raw, _retrieval())

    source = answer.obligations[0].source
    assert source.score == 0.81
    assert source.excerpt.startswith("Los sujetos obligados")
    assert source.attributes == {"position": 4, "rank": 1}
    assert source.reference == "Art. 3"


def test_values_supplied_by_the_model_are_kept() -> None:
    raw = json.dumps(
        {
            "summary": "s",
            "obligations": [_obligation("ley-19913", "ley-19913-4", score=0.3, excerpt="cita")],
        }
    )

    source = parse_answer(raw, _retrieval()).obligations[0].source

    assert source.score == 0.3
    assert source.excerpt == "cita"


def test_obligations_citing_unretrieved_documents_are_dropped() -> None:
    raw = json.dumps(
        {
            "summary": "s",
            "obligations": [_obligation("ley-19913", "Art. 3"), _obligation("ley-99999", "Art. 1")],
            "disclaimers": ["Consultar abogado"],
        }
    )

    answer = parse_answer(raw, _retrieval())

    assert [obligation.id for obligation in answer.obligations] == ["obl-ley-19913"]
    assert answer.disclaimers[0] == "Consultar abogado"
    assert "obl-ley-99999" in answer.disclaimers[1]


def test_without_retrieved_context_obligations_are_kept_unchanged() -> None:
    raw = json.dumps({"summary": "s", "obligations": [_obligation("ley-19913", "Art. 3")]})

    answer = parse_answer(raw, None)

    assert len(answer.obligations) == 1
    assert answer.obligations[0].source.score is None
    assert answer.disclaimers is None


def test_format_context_lists_each_chunk_with_its_reference() -> None:
    context = format_context(_retrieval())

    assert "### Context 1" in context
    assert "Reference: ley-21521" in context
    assert "Score: 0.8100" in context
    assert format_context(None) == NO_CONTEXT
    assert format_context(RetrievalResult(query="q")) == NO_CONTEXT
