# models/token_record.py

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class Attribute:
    trait_type: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"trait_type": self.trait_type, "value": self.value}


@dataclass
class TokenRecord:
    token_id: int
    name: str
    description: str
    attributes: List[Attribute] = field(default_factory=list)
    image_ref: str = ""       # relative path, e.g. "17.svg"
    # Decoded metadata object as the contract returned it
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_metadata(self) -> Dict[str, Any]:
        """
        Shape persisted to metadata/{id}.json and metadata_json.

        Every field the contract returned is kept as-is; only `image` is
        replaced with the local file name.
        """
        if self.raw:
            data = dict(self.raw)
            data["image"] = self.image_ref
            return data
        return {
            "name": self.name,
            "description": self.description,
            "attributes": [a.to_dict() for a in self.attributes],
            "image": self.image_ref,
        }

    @classmethod
    def from_metadata(cls, token_id: int, data: Dict[str, Any]) -> "TokenRecord":
        return cls(
            token_id=token_id,
            name=str(data.get("name", "")),
            description=str(data.get("description") or ""),
            attributes=[
                Attribute(trait_type=str(a.get("trait_type", "")), value=str(a.get("value", "")))
                for a in data.get("attributes") or []
            ],
            image_ref=str(data.get("image") or f"{token_id}.svg"),
            raw=dict(data),
        )


@dataclass
class DecodedToken:
    """Decoder output: the record plus the raw vector markup it references."""
    record: TokenRecord
    svg: str
