"""Pytest configuration and fixtures."""

import pytest

from qbank_pipeline.config import Settings
from qbank_pipeline.models import DocumentMetadata
from qbank_pipeline.storage import QuestionRepository


@pytest.fixture
def sample_exam_text() -> str:
    """Five well-formed questions, the third with a fifth alternative."""
    return """
PROVA DE RESIDÊNCIA MÉDICA - ENARE 2023
Acesso direto - Caderno 1

QUESTÃO 1
Paciente de 25 anos apresenta dor em fossa ilíaca direita há 24 horas,
acompanhada de febre e náuseas. Qual o diagnóstico mais provável?
(A) Apendicite aguda
(B) Colecistite calculosa
(C) Pancreatite biliar
(D) Diverticulite de sigmoide
Gabarito: A

QUESTÃO 2
Criança de 4 anos com febre alta, exantema maculopapular e manchas de
Koplik na mucosa oral. Qual o agente etiológico?
(A) Vírus do sarampo
(B) Parvovírus B19
(C) Herpesvírus humano tipo 6
(D) Streptococcus pyogenes
Gabarito: A

QUESTÃO 3
Gestante de 32 semanas apresenta pressão arterial de 160x110 mmHg e
proteinúria. Qual a conduta inicial mais adequada?
(A) Sulfato de magnésio e anti-hipertensivo
(B) Cesariana imediata sem estabilização
(C) Observação ambulatorial semanal
(D) Diurético de alça em dose alta
(E) Repouso domiciliar exclusivo
Gabarito: A

QUESTÃO 4
Homem de 60 anos, tabagista, com tosse crônica e dispneia progressiva.
Qual exame confirma o diagnóstico de DPOC?
(A) Espirometria com prova broncodilatadora
(B) Gasometria arterial em repouso
(C) Dosagem de alfa-1 antitripsina
(D) Ecocardiograma transtorácico
Gabarito: A

QUESTÃO 5
Mulher de 45 anos com poliúria, polidipsia e glicemia de jejum de
180 mg/dL em duas ocasiões. Qual o diagnóstico?
(A) Diabetes mellitus tipo 2
(B) Diabetes insípido central
(C) Hiperparatireoidismo primário
(D) Síndrome de Cushing
Gabarito: B
Comentário: Duas glicemias de jejum acima de 126 mg/dL confirmam o diagnóstico.
"""


@pytest.fixture
def invalid_key_exam_text() -> str:
    """Three questions; the second claims answer E but has only four alternatives."""
    return """
QUESTÃO 1
Lactente de 8 meses com sibilância recorrente e tosse noturna há duas semanas.
(A) Bronquiolite viral aguda
(B) Corpo estranho em via aérea
(C) Refluxo gastroesofágico
(D) Fibrose cística
Gabarito: A

QUESTÃO 2
Idoso de 78 anos com confusão mental aguda, febre e disúria há três dias.
(A) Infecção do trato urinário
(B) Acidente vascular encefálico
(C) Hipoglicemia grave
(D) Hematoma subdural crônico
Gabarito: E

QUESTÃO 3
Adolescente de 16 anos com dor torácica ventilatório-dependente após esforço.
(A) Pneumotórax espontâneo
(B) Infarto agudo do miocárdio
(C) Dissecção de aorta
(D) Pericardite constritiva
Gabarito: A
"""


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'qbank.db'}"


@pytest.fixture
def repository(database_url: str) -> QuestionRepository:
    """Repository on a fresh SQLite file."""
    return QuestionRepository.from_url(database_url)


@pytest.fixture
def settings(database_url: str) -> Settings:
    """Settings for offline runs: regex structuring, no LLM, fast retries."""
    return Settings(
        database_url=database_url,
        llm_enabled=False,
        structuring_strategy="regex",
        retry_wait_min_seconds=0,
        retry_wait_max_seconds=0,
    )


@pytest.fixture
def document_id(repository: QuestionRepository) -> int:
    return repository.upsert_document(
        "ENARE 2023", DocumentMetadata(title="ENARE 2023", institution="ENARE", year=2023)
    )


@pytest.fixture
def make_question():
    """Factory for question rows accepted by QuestionRepository.insert_question."""

    def _make(stem: str, **overrides) -> dict:
        row = {
            "number_in_exam": 1,
            "stem": stem,
            "option_a": "Apendicite aguda",
            "option_b": "Colecistite calculosa",
            "option_c": "Pancreatite biliar",
            "option_d": "Diverticulite de sigmoide",
            "option_e": None,
            "correct_option": "A",
            "explanation": None,
            "area": "Cirurgia",
        }
        row.update(overrides)
        return row

    return _make
