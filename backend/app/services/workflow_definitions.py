"""
Guided-form workflow definitions.

Definitions are immutable and loaded by id. Each step has a type
(info / ask / ocr / confirm / submit), a key unique within the workflow and
optional validation rules that apply to the answer recorded for it.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..core.errors import WorkflowNotFoundError
from .validation import RULES


class StepType:
    INFO = "info"
    ASK = "ask"
    OCR = "ocr"
    CONFIRM = "confirm"
    SUBMIT = "submit"

    ALL = [INFO, ASK, OCR, CONFIRM, SUBMIT]


@dataclass(frozen=True)
class Step:
    index: int
    type: str
    key: str
    title: str
    prompt: str
    validation: Tuple[str, ...] = ()
    document_type: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {
            "step": self.index + 1,
            "type": self.type,
            "key": self.key,
            "title": self.title,
            "prompt": self.prompt,
        }
        if self.validation:
            data["validation"] = "|".join(self.validation)
        if self.document_type:
            data["documentType"] = self.document_type
        return data


@dataclass(frozen=True)
class WorkflowDefinition:
    id: str
    name: str
    category: str
    steps: Tuple[Step, ...]
    description: str = ""
    estimated_time: str = ""
    difficulty: str = "easy"
    processing_time: str = "15-30 business days"

    def __post_init__(self):
        if not self.steps:
            raise ValueError(f"Workflow '{self.id}' has no steps")
        keys = [s.key for s in self.steps]
        if len(keys) != len(set(keys)):
            raise ValueError(f"Workflow '{self.id}' has duplicate step keys")
        for position, step in enumerate(self.steps):
            if step.index != position:
                raise ValueError(f"Workflow '{self.id}' step '{step.key}' is out of order")
            if step.type not in StepType.ALL:
                raise ValueError(f"Workflow '{self.id}' step '{step.key}' has unknown type '{step.type}'")
            unknown = [r for r in step.validation if r not in RULES]
            if unknown:
                raise ValueError(f"Workflow '{self.id}' step '{step.key}' has unknown rule(s) {unknown}")

    @property
    def step_count(self) -> int:
        return len(self.steps)

    def step_for_key(self, key: str) -> Optional[Step]:
        for step in self.steps:
            if step.key == key:
                return step
        return None

    def summary(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "estimatedTime": self.estimated_time,
            "difficulty": self.difficulty,
            "icon": self.id.split("-")[0],
        }

    def to_dict(self) -> Dict:
        data = self.summary()
        data["steps"] = [s.to_dict() for s in self.steps]
        return data


def build_definition(raw: Dict) -> WorkflowDefinition:
    """Build a definition from the JSON shape the mobile app ships with."""
    steps = []
    for position, raw_step in enumerate(raw["steps"]):
        rules = raw_step.get("validation") or ()
        if isinstance(rules, str):
            rules = tuple(r for r in rules.split("|") if r)
        steps.append(Step(
            index=position,
            type=raw_step["type"],
            key=raw_step["key"],
            title=raw_step.get("title", ""),
            prompt=raw_step.get("prompt", ""),
            validation=tuple(rules),
            document_type=raw_step.get("documentType"),
        ))
    return WorkflowDefinition(
        id=raw["id"],
        name=raw["name"],
        category=raw["category"],
        steps=tuple(steps),
        description=raw.get("description", ""),
        estimated_time=raw.get("estimatedTime", ""),
        difficulty=raw.get("difficulty", "easy"),
        processing_time=raw.get("processingTime", "15-30 business days"),
    )


_CATALOGUE: List[Dict] = [
    {
        "id": "aadhaar-application",
        "name": "Aadhaar Card Application",
        "description": "Apply for new Aadhaar card",
        "category": "identity",
        "estimatedTime": "15 minutes",
        "difficulty": "easy",
        "processingTime": "90 days",
        "steps": [
            {"type": "info", "key": "welcome", "title": "Welcome to Aadhaar Application",
             "prompt": "Welcome to Aadhaar card application. I will guide you through the process step by step."},
            {"type": "ask", "key": "ask_name", "title": "Full Name",
             "prompt": "What is your full name as it should appear on the Aadhaar card?", "validation": "required"},
            {"type": "ask", "key": "ask_age", "title": "Age",
             "prompt": "What is your age?", "validation": "number"},
            {"type": "ocr", "key": "scan_address_proof", "title": "Address Proof",
             "prompt": "Please scan your address proof document", "documentType": "address_proof"},
            {"type": "confirm", "key": "confirm_details", "title": "Confirm Details",
             "prompt": "Please review all information and confirm"},
            {"type": "submit", "key": "submit_application", "title": "Submit Application",
             "prompt": "Submitting your Aadhaar application..."},
        ],
    },
    {
        "id": "pan-application",
        "name": "PAN Card Application",
        "description": "Apply for new PAN card",
        "category": "tax",
        "estimatedTime": "10 minutes",
        "difficulty": "easy",
        "processingTime": "15-20 business days",
        "steps": [
            {"type": "info", "key": "welcome", "title": "PAN Application",
             "prompt": "Let's help you apply for a PAN card"},
            {"type": "ask", "key": "ask_name", "title": "Full Name",
             "prompt": "What is your full name as per documents?", "validation": "required"},
            {"type": "ask", "key": "ask_father_name", "title": "Father's Name",
             "prompt": "What is your father's name?", "validation": "required"},
            {"type": "ocr", "key": "scan_identity_proof", "title": "Identity Proof",
             "prompt": "Please scan your identity proof", "documentType": "identity_proof"},
            {"type": "submit", "key": "submit_application", "title": "Submit Application",
             "prompt": "Submitting your PAN application..."},
        ],
    },
    {
        "id": "passport-application",
        "name": "Passport Application",
        "description": "Apply for new passport",
        "category": "travel",
        "estimatedTime": "20 minutes",
        "difficulty": "medium",
        "processingTime": "30-45 days",
        "steps": [
            {"type": "info", "key": "welcome", "title": "Passport Application",
             "prompt": "Let's help you apply for a passport"},
            {"type": "ask", "key": "ask_name", "title": "Full Name",
             "prompt": "What is your full name?", "validation": "required"},
            {"type": "ask", "key": "ask_place_of_birth", "title": "Place of Birth",
             "prompt": "Where were you born?", "validation": "required"},
            {"type": "ocr", "key": "scan_birth_certificate", "title": "Birth Certificate",
             "prompt": "Please scan your birth certificate", "documentType": "birth_certificate"},
            {"type": "ocr", "key": "scan_address_proof", "title": "Address Proof",
             "prompt": "Please scan your address proof", "documentType": "address_proof"},
            {"type": "submit", "key": "submit_application", "title": "Submit Application",
             "prompt": "Submitting your passport application..."},
        ],
    },
]

WORKFLOWS: Dict[str, WorkflowDefinition] = {
    raw["id"]: build_definition(raw) for raw in _CATALOGUE
}


def load_workflow(workflow_id: str) -> WorkflowDefinition:
    try:
        return WORKFLOWS[workflow_id]
    except KeyError:
        raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found") from None


def list_workflows(category: Optional[str] = None) -> List[WorkflowDefinition]:
    definitions = list(WORKFLOWS.values())
    if category and category != "all":
        definitions = [d for d in definitions if d.category == category]
    return definitions
