# scripts/gen_schemas.py
"""
Generate JSON Schemas for the proposer contracts and the engine config.

Exports:
    - schedule_proposal  (generation response)
    - repair_request     (request sent for a patch)
    - repair_response    (patch returned by the proposer)
    - engine_config      (config.yaml)

Output directory: schemas/
"""

import json
from pathlib import Path

from pydantic import BaseModel

from therasched.schemas.config import EngineConfig
from therasched.schemas.models import ScheduleProposal
from therasched.schemas.repair import RepairRequest, RepairResponse

MODELS: dict[str, type[BaseModel]] = {
    "schedule_proposal": ScheduleProposal,
    "repair_request": RepairRequest,
    "repair_response": RepairResponse,
    "engine_config": EngineConfig,
}


def export_schema(model_cls: type[BaseModel], name: str, out_dir: Path) -> Path:
    """
    @brief
    Writes "<name>.schema.json" for one pydantic model.

    @details
    Schemas use the wire (camelCase) field names, i.e. what the proposer
    sees and returns.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    schema_path = (out_dir / f"{name}.schema.json").resolve()
    schema = model_cls.model_json_schema(by_alias=True)

    with schema_path.open("w", encoding="utf-8") as f:
        json.dump(schema, f, indent=2, ensure_ascii=False)
        f.write("\n")

    try:
        rel = schema_path.relative_to(Path.cwd())
    except ValueError:
        rel = schema_path
    print(f"Generated {rel}")
    return schema_path


def main() -> None:
    out_dir = Path("schemas").resolve()
    for name, model_cls in MODELS.items():
        export_schema(model_cls, name, out_dir)


if __name__ == "__main__":
    main()
