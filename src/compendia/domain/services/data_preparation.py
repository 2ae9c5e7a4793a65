"""Data preparation pipeline.

Recomputes a document's derived state from its stored source in three
fixed phases:

1. base data      - validate source and reset to a clean projection of it
2. embedded data  - prepare every embedded child, in insertion order
3. derived data   - compute values from base data, children and ancestors

Document subtypes add computation inside a phase by overriding
``prepare_base_data`` / ``prepare_derived_data``; the phase order itself
lives here and is not overridable. A failed pass anywhere in the tree
leaves every document with the derived data it had before the pass.
"""

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from compendia.core.exceptions import DocumentValidationError
from compendia.core.logging import get_logger

if TYPE_CHECKING:
    from compendia.domain.entities.document import Document

logger = get_logger(__name__)


@dataclass
class PreparationContext:
    """State of one preparation pass for one document.

    Attributes:
        document: The document being prepared.
        data: Staged derived data; published when the pass completes.
        ancestors: Derived data of the ancestors, nearest first.
    """

    document: "Document"
    data: dict[str, Any] = field(default_factory=dict)
    ancestors: tuple[dict[str, Any], ...] = ()

    @property
    def parent_data(self) -> Optional[dict[str, Any]]:
        """Derived data of the direct parent, if any."""
        return self.ancestors[0] if self.ancestors else None


def validate_source(
    schema: type[BaseModel], document_name: str, source: Mapping[str, Any]
) -> dict[str, Any]:
    """Validate source data and return its clean, deep-copied projection.

    Raises:
        DocumentValidationError: If the source fails the schema.
    """
    try:
        model = schema.model_validate(dict(source))
    except PydanticValidationError as e:
        raise DocumentValidationError.from_pydantic(document_name, e) from e
    return copy.deepcopy(model.model_dump(by_alias=True))


class DataPreparationPipeline:
    """Runs the ordered preparation phases for a document tree."""

    PHASES = ("base", "embedded", "derived")

    def prepare(
        self,
        document: "Document",
        ancestors: Optional[tuple[dict[str, Any], ...]] = None,
    ) -> dict[str, Any]:
        """Run a full preparation pass over ``document`` and its embedded tree.

        Children are published as they complete so that the parent's derived
        phase can read them. If any phase of the tree fails, every document
        published during the pass is restored to its previous derived data.

        Args:
            document: The document to prepare.
            ancestors: Ancestor data, nearest first; when omitted the published
                derived data of the parent chain is used.

        Returns:
            The newly published derived data.
        """
        if ancestors is None:
            ancestors = self._published_ancestors(document)

        journal: list[tuple["Document", Optional[dict[str, Any]]]] = []
        try:
            return self._prepare_tree(document, ancestors, journal)
        except Exception:
            for prepared, previous in reversed(journal):
                prepared._publish_derived_data(previous)
            raise

    def _prepare_tree(
        self,
        document: "Document",
        ancestors: tuple[dict[str, Any], ...],
        journal: list[tuple["Document", Optional[dict[str, Any]]]],
    ) -> dict[str, Any]:
        context = PreparationContext(document=document, ancestors=ancestors)
        phase = self.PHASES[0]
        try:
            self._prepare_base_data(context)
            phase = self.PHASES[1]
            self._prepare_embedded_documents(context, journal)
            phase = self.PHASES[2]
            document.prepare_derived_data(context)
        except Exception as e:
            logger.warning(
                "Preparation pass aborted",
                document=document.document_name,
                document_id=document.id,
                phase=phase,
                error=str(e),
            )
            raise

        journal.append((document, document._derived))
        document._publish_derived_data(context.data)
        return context.data

    def _prepare_base_data(self, context: PreparationContext) -> None:
        document = context.document
        context.data = validate_source(
            document.schema, document.document_name, document._source
        )
        document.prepare_base_data(context)

    def _prepare_embedded_documents(
        self,
        context: PreparationContext,
        journal: list[tuple["Document", Optional[dict[str, Any]]]],
    ) -> None:
        ancestors = (context.data,) + context.ancestors
        for embedded_name in context.document.embedded:
            for child in context.document.get_embedded_collection(embedded_name):
                self._prepare_tree(child, ancestors, journal)

    @staticmethod
    def _published_ancestors(document: "Document") -> tuple[dict[str, Any], ...]:
        ancestors: list[dict[str, Any]] = []
        parent = document.parent
        while parent is not None:
            ancestors.append(parent._derived if parent._derived is not None else {})
            parent = parent.parent
        return tuple(ancestors)


default_pipeline = DataPreparationPipeline()
