"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import asyncio
import re
import sys
from pathlib import Path

import pytest
from loguru import logger

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


WELL_FORMED_RESPONSE = """CLINICAL_VIGNETTE:
A 16-year-old male presents to the clinic with a 6-month history of papules and pustules on his face. Physical examination reveals open and closed comedones, inflammatory papules, and scattered pustules on the forehead and cheeks. He has no history of medication use and no other medical problems.

LEAD_IN:
What is the most likely diagnosis?

OPTION_A:
Acne vulgaris

OPTION_B:
Acne rosacea

OPTION_C:
Folliculitis

OPTION_D:
Miliaria rubra

OPTION_E:
Keratosis pilaris

CORRECT_ANSWER:
A

CORRECT_ANSWER_RATIONALE:
Acne vulgaris is a chronic inflammatory disorder of the pilosebaceous unit that typically begins in adolescence. The presence of both open and closed comedones alongside inflammatory papules and pustules in a seborrheic distribution in a teenager is diagnostic.

DISTRACTOR_1_EXPLANATION:
Rosacea affects adults over thirty and presents with central facial erythema and telangiectasias; comedones are absent.

DISTRACTOR_2_EXPLANATION:
Folliculitis produces follicular pustules, often on the trunk or thighs, without comedones.

DISTRACTOR_3_EXPLANATION:
Miliaria rubra follows heat exposure and occlusion and shows small erythematous papules rather than comedones.

DISTRACTOR_4_EXPLANATION:
Keratosis pilaris causes rough follicular papules on the extensor upper arms and is not inflammatory.

EDUCATIONAL_PEARLS:
1. Key learning point: Comedones are the defining primary lesion of acne vulgaris.
2. Key learning point: The absence of comedones should prompt consideration of rosacea or folliculitis.
3. Key learning point: Topical retinoids are first-line therapy for comedonal acne.

QUALITY_VALIDATION:
- Covers options test: YES
- Cognitive level: YES
- Clinical realism: YES
- Homogeneous options: YES
- Difficulty appropriate: YES
"""

MALFORMED_RESPONSE = "I'm sorry, I can't write that question right now. Please try again later."

# Has a vignette but no options or rationale: semantically empty
VIGNETTE_ONLY_RESPONSE = """CLINICAL_VIGNETTE:
A 30-year-old woman presents with a 2-week history of an itchy rash on both wrists.
"""

# Vignette, options and rationale are all present, but one option is missing
FOUR_OPTION_RESPONSE = """CLINICAL_VIGNETTE:
A 30-year-old woman presents with a 2-week history of an itchy rash on both wrists. Examination reveals flat-topped violaceous papules with fine white streaks.

LEAD_IN:
What is the most likely diagnosis?

OPTION_A:
Lichen planus

OPTION_B:
Psoriasis

OPTION_C:
Scabies

OPTION_D:
Nummular eczema

CORRECT_ANSWER:
A

CORRECT_ANSWER_RATIONALE:
Pruritic, purple, polygonal, planar papules with Wickham striae on the flexor wrists are characteristic of lichen planus.
"""

# Well-formed except that the correct-answer rationale is left out
NO_RATIONALE_RESPONSE = re.sub(
    r"CORRECT_ANSWER_RATIONALE:\n.*?\n\n", "", WELL_FORMED_RESPONSE, flags=re.DOTALL
)


class ScriptedModelClient:
    """Model client stub that replays a script of responses.

    Each call returns the next item; exception instances are raised.
    With repeat_last=True the final item is reused once the script runs out.
    """

    def __init__(self, responses, *, repeat_last=False, delay=0.0):
        self.responses = list(responses)
        self.repeat_last = repeat_last
        self.delay = delay
        self.prompts = []
        self.options = []

    @property
    def calls(self):
        return len(self.prompts)

    async def complete(self, prompt, options=None):
        self.prompts.append(prompt)
        self.options.append(options)
        if self.delay:
            await asyncio.sleep(self.delay)
        index = len(self.prompts) - 1
        if self.repeat_last:
            index = min(index, len(self.responses) - 1)
        item = self.responses[index]
        if isinstance(item, BaseException):
            raise item
        return item


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Pipeline scenarios with a stubbed model")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep loguru output to warnings and above during tests."""
    logger.remove()
    logger.add(sys.stderr, level="WARNING", format="<level>{message}</level>")
    yield
    logger.remove()


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def well_formed_response():
    return WELL_FORMED_RESPONSE


@pytest.fixture
def malformed_response():
    return MALFORMED_RESPONSE


@pytest.fixture
def vignette_only_response():
    return VIGNETTE_ONLY_RESPONSE


@pytest.fixture
def four_option_response():
    return FOUR_OPTION_RESPONSE


@pytest.fixture
def no_rationale_response():
    return NO_RATIONALE_RESPONSE


@pytest.fixture
def scripted_client():
    """Factory for ScriptedModelClient stubs."""
    return ScriptedModelClient


@pytest.fixture
def valid_draft():
    """A structurally valid draft that passes the default rubric."""
    from mcqgen.parsing.structured_text import parse_structured_text

    return parse_structured_text(WELL_FORMED_RESPONSE).to_draft()
