"""
In-memory store of all memory records.

The store exclusively owns every MemoryRecord. Callers get references from
the query methods but mutate only through the store's operations, so the
confidence invariants and dirty tracking stay in one place:

- every confidence change goes through the confidence engine
- a record whose confidence drops below the deactivation threshold is
  deactivated and no longer recalled
- lookups return None (or an empty list) when nothing matches
- mutations on unknown ids are silent no-ops returning None

Each variant lives in its own collection. Lookup by id scans all four.

Concurrency: one re-entrant lock guards the whole store. The pipeline
holds it for a complete invoice, flush() holds it for the duration of the
write, and decay maintenance holds it store-wide.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from .. import confidence as ce
from ..confidence import ConfidenceSettings
from ..duplicates.detector import SIMILARITY_THRESHOLD, similarity
from ..schemas.dedupe import compute_fingerprint, generate_hash, vendor_key
from ..schemas.decision import MemoryUpdate, UpdateOperation
from ..schemas.memory import (
    CorrectionMemory,
    CorrectionPattern,
    DecisionAction,
    DuplicateRecord,
    DuplicateResolution,
    FieldMapping,
    HumanDecision,
    MemoryRecord,
    MemoryStats,
    PatternType,
    ResolutionMemory,
    VendorBehavior,
    VendorMemory,
    generate_id,
    parse_timestamp,
    to_timestamp,
    utc_now,
)
from ..storage.base import MemoryStorage
from ..storage.snapshot import MemorySnapshot

logger = logging.getLogger(__name__)

# Starting confidences for records backed by a human decision
HUMAN_APPROVED_CORRECTION_CONFIDENCE = 0.7
RESOLUTION_CONFIDENCE = 0.6


class MemoryStore:
    """
    Owner of vendor, correction, resolution and duplicate memories.

    Usage:
        store = MemoryStore()
        store.init(JsonSnapshotStorage("data/memory.json"))
        ...
        store.flush()
    """

    def __init__(
        self,
        settings: Optional[ConfidenceSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
    ) -> None:
        self.settings = settings or ConfidenceSettings()
        self.clock = clock
        self.similarity_threshold = similarity_threshold

        self.vendors: dict[str, VendorMemory] = {}
        self.corrections: list[CorrectionMemory] = []
        self.resolutions: list[ResolutionMemory] = []
        self.duplicates: list[DuplicateRecord] = []
        self.stats = MemoryStats()

        self.storage: Optional[MemoryStorage] = None
        self.is_dirty = False
        self._lock = threading.RLock()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @contextmanager
    def locked(self) -> Iterator["MemoryStore"]:
        """Hold the store lock (re-entrant) for a sequence of operations."""
        with self._lock:
            yield self

    def init(self, storage: MemoryStorage) -> None:
        """Attach a storage collaborator and load its snapshot."""
        with self._lock:
            self.storage = storage
            self.restore(storage.load())
            self.is_dirty = False
            logger.info(
                "Memory store initialized: %d vendor(s), %d correction(s), "
                "%d resolution(s), %d duplicate record(s)",
                len(self.vendors),
                len(self.corrections),
                len(self.resolutions),
                len(self.duplicates),
            )

    def flush(self) -> bool:
        """
        Save through the storage collaborator if anything changed.

        Returns:
            True if a save happened

        Raises:
            StorageError: Propagated from the collaborator
        """
        with self._lock:
            if not self.is_dirty or self.storage is None:
                return False
            self.storage.save(self.snapshot())
            self.is_dirty = False
            logger.info("Memory store saved")
            return True

    def snapshot(self) -> MemorySnapshot:
        """Current state as a snapshot (records are shared, not copied)."""
        with self._lock:
            return MemorySnapshot(
                last_updated=self._now_ts(),
                vendors=dict(self.vendors),
                corrections=list(self.corrections),
                resolutions=list(self.resolutions),
                duplicates=list(self.duplicates),
                stats=self.stats,
            )

    def restore(self, snapshot: MemorySnapshot) -> None:
        """Replace the store contents with a snapshot."""
        with self._lock:
            self.vendors = dict(snapshot.vendors)
            self.corrections = list(snapshot.corrections)
            self.resolutions = list(snapshot.resolutions)
            self.duplicates = list(snapshot.duplicates)
            self.stats = snapshot.stats

    def _now(self) -> datetime:
        return self.clock()

    def _now_ts(self) -> str:
        return to_timestamp(self._now())

    def _new_record_fields(self, record_cls: type, confidence: float) -> dict:
        now = self._now_ts()
        return {
            "id": generate_id(record_cls.id_prefix),
            "created_at": now,
            "updated_at": now,
            "confidence": ce.clamp(confidence, self.settings),
            "reinforcement_count": 1,
            "contradiction_count": 0,
            "is_active": True,
        }

    # =========================================================================
    # Vendor memories
    # =========================================================================

    def get_vendor(self, canonical_id: str) -> Optional[VendorMemory]:
        return self.vendors.get(canonical_id)

    def find_vendor_by_name(self, name: str) -> Optional[VendorMemory]:
        """Active vendor whose canonical name or a variant matches (case-insensitive)."""
        if not name or not name.strip():
            return None
        for vendor in self.vendors.values():
            if vendor.is_active and vendor.knows_name(name):
                return vendor
        return None

    def create_vendor(
        self,
        canonical_id: str,
        canonical_name: str,
        confidence: Optional[float] = None,
        name_variations: Optional[list[str]] = None,
        behaviors: Optional[VendorBehavior] = None,
        tax_id: Optional[str] = None,
    ) -> VendorMemory:
        """
        Create a vendor memory.

        Vendors are never replaced: if a record already exists under the
        canonical id (active or not) it is returned unchanged. Use
        reactivate_vendor() to bring back a deactivated vendor.
        """
        with self._lock:
            existing = self.vendors.get(canonical_id)
            if existing is not None:
                logger.warning(
                    "Vendor memory %s already exists for %r, not replacing",
                    existing.id,
                    canonical_id,
                )
                return existing

            variations: list[str] = []
            for name in name_variations or []:
                if name and name.lower() not in (v.lower() for v in variations):
                    variations.append(name)

            vendor = VendorMemory(
                **self._new_record_fields(
                    VendorMemory,
                    ce.initial(self.settings) if confidence is None else confidence,
                ),
                canonical_id=canonical_id,
                canonical_name=canonical_name,
                name_variations=variations,
                behaviors=behaviors or VendorBehavior(),
                tax_id=tax_id,
            )
            self.vendors[canonical_id] = vendor
            self.is_dirty = True
            logger.debug("Created vendor memory %s for %r", vendor.id, canonical_name)
            return vendor

    def reactivate_vendor(
        self, canonical_id: str, confidence: Optional[float] = None
    ) -> Optional[VendorMemory]:
        """
        Reactivate a deactivated vendor memory in place.

        The record keeps its id, name variants, mappings and counters; only
        its confidence restarts (clamped by the confidence engine).

        Returns:
            The vendor, or None if unknown or already active
        """
        with self._lock:
            vendor = self.vendors.get(canonical_id)
            if vendor is None or vendor.is_active:
                return None
            vendor.confidence = ce.clamp(
                ce.initial(self.settings) if confidence is None else confidence,
                self.settings,
            )
            vendor.is_active = True
            vendor.updated_at = self._now_ts()
            vendor.decayed_at = None
            self.is_dirty = True
            logger.info(
                "Vendor memory %s reactivated at confidence %.3f", vendor.id, vendor.confidence
            )
            return vendor

    def add_name_variation(self, canonical_id: str, name: str) -> Optional[VendorMemory]:
        """
        Append a name variant (case-insensitive, append-only).

        Returns:
            The vendor if a new variant was added, None otherwise
        """
        with self._lock:
            vendor = self.vendors.get(canonical_id)
            if vendor is None or not name or vendor.knows_name(name):
                return None
            vendor.name_variations.append(name)
            vendor.updated_at = self._now_ts()
            self.is_dirty = True
            return vendor

    def add_field_mapping(
        self,
        canonical_id: str,
        source_field: str,
        target_field: str,
        example_value: Optional[str] = None,
    ) -> Optional[FieldMapping]:
        """
        Learn (or reinforce) a vendor field mapping.

        A known source->target mapping is reinforced; a new one starts at
        the initial confidence. A different target replaces the old one.
        """
        with self._lock:
            vendor = self.vendors.get(canonical_id)
            if vendor is None:
                return None

            mapping = vendor.field_mappings.get(source_field)
            if mapping is not None and mapping.target_field == target_field:
                mapping.confidence = ce.reinforce(mapping.confidence, self.settings)
                mapping.occurrence_count += 1
            else:
                mapping = FieldMapping(
                    source_field=source_field,
                    target_field=target_field,
                    confidence=ce.initial(self.settings),
                )
                vendor.field_mappings[source_field] = mapping

            if example_value and example_value not in mapping.example_values:
                mapping.example_values.append(example_value)
            vendor.updated_at = self._now_ts()
            self.is_dirty = True
            return mapping

    def update_vendor_behavior(self, canonical_id: str, **changes) -> Optional[VendorMemory]:
        """Set vendor behavior flags, e.g. update_vendor_behavior(id, vat_included=True)."""
        with self._lock:
            vendor = self.vendors.get(canonical_id)
            if vendor is None:
                return None
            for key, value in changes.items():
                if not hasattr(vendor.behaviors, key):
                    raise ValueError(f"Unknown vendor behavior: {key}")
                setattr(vendor.behaviors, key, value)
            vendor.updated_at = self._now_ts()
            self.is_dirty = True
            return vendor

    # =========================================================================
    # Correction memories
    # =========================================================================

    def find_corrections(
        self,
        vendor_id: Optional[str] = None,
        pattern_type: Optional[PatternType] = None,
    ) -> list[CorrectionMemory]:
        """
        Active corrections scoped to a vendor.

        Global corrections (vendor_id None) are always included. With no
        vendor_id only global corrections are returned.
        """
        return [
            c
            for c in self.corrections
            if c.is_active
            and (c.vendor_id is None or (vendor_id is not None and c.vendor_id == vendor_id))
            and (pattern_type is None or c.pattern.type == pattern_type)
        ]

    def find_similar_correction(self, pattern: CorrectionPattern) -> Optional[CorrectionMemory]:
        for correction in self.corrections:
            if (
                correction.is_active
                and correction.pattern.type == pattern.type
                and correction.pattern.signature == pattern.signature
            ):
                return correction
        return None

    def record_correction(
        self,
        pattern: CorrectionPattern,
        suggested_action: str,
        vendor_id: Optional[str] = None,
        human_approved: bool = False,
    ) -> CorrectionMemory:
        """
        Create-or-reinforce a correction memory keyed by (type, signature).

        A new human-approved correction starts at 0.7, otherwise at the
        initial confidence.
        """
        with self._lock:
            existing = self.find_similar_correction(pattern)
            if existing is not None:
                self._reinforce(existing)
                if human_approved:
                    existing.human_approved = True
                return existing

            start = HUMAN_APPROVED_CORRECTION_CONFIDENCE if human_approved else None
            correction = CorrectionMemory(
                **self._new_record_fields(
                    CorrectionMemory,
                    ce.initial(self.settings) if start is None else start,
                ),
                pattern=pattern,
                suggested_action=suggested_action,
                vendor_id=vendor_id,
                human_approved=human_approved,
            )
            self.corrections.append(correction)
            self.is_dirty = True
            logger.debug(
                "Created correction memory %s (%s)", correction.id, pattern.signature
            )
            return correction

    # =========================================================================
    # Resolution memories
    # =========================================================================

    def find_resolution(self, context_hash: str) -> Optional[ResolutionMemory]:
        for resolution in self.resolutions:
            if resolution.is_active and resolution.context_hash == context_hash:
                return resolution
        return None

    def record_resolution(
        self,
        decision: HumanDecision,
        related_memory_id: Optional[str] = None,
        context_hash: Optional[str] = None,
    ) -> ResolutionMemory:
        """
        Record a human decision.

        Decisions about the same context are appended to one resolution
        memory (which is reinforced). A rejection also penalizes the
        related memory.
        """
        with self._lock:
            if context_hash is None:
                if related_memory_id is not None:
                    context_hash = generate_hash({"related_memory_id": related_memory_id})
                else:
                    context_hash = generate_hash(
                        {
                            "decision_type": decision.decision_type.value,
                            "action": decision.action.value,
                        }
                    )

            resolution = self.find_resolution(context_hash)
            if resolution is not None:
                resolution.decisions.append(decision)
                self._reinforce(resolution)
            else:
                resolution = ResolutionMemory(
                    **self._new_record_fields(ResolutionMemory, RESOLUTION_CONFIDENCE),
                    decisions=[decision],
                    related_memory_id=related_memory_id,
                    context_hash=context_hash,
                )
                self.resolutions.append(resolution)
                self.is_dirty = True

            if related_memory_id and decision.action == DecisionAction.REJECTED:
                self.penalize_memory(related_memory_id)

            return resolution

    # =========================================================================
    # Duplicate records
    # =========================================================================

    def find_duplicate(self, duplicate_hash: str) -> Optional[DuplicateRecord]:
        for record in self.duplicates:
            if record.duplicate_hash == duplicate_hash:
                return record
        return None

    def record_duplicate(
        self,
        vendor_id: Optional[str],
        vendor_name: str,
        invoice_number: str,
        invoice_date: str,
        amount: Optional[Decimal],
        invoice_id: str,
    ) -> tuple[bool, DuplicateRecord]:
        """
        Record an invoice occurrence for duplicate tracking.

        - fingerprint miss: create the first-seen record
        - hit with similarity above the threshold: append the invoice id
        - hit at or below the threshold: leave the lineage untouched

        Returns:
            (is_duplicate, record)
        """
        with self._lock:
            duplicate_hash = compute_fingerprint(
                vendor_id, vendor_name, invoice_number, invoice_date
            )
            existing = self.find_duplicate(duplicate_hash)

            if existing is not None:
                if invoice_id == existing.original_invoice_id or (
                    invoice_id in existing.duplicate_invoice_ids
                ):
                    return True, existing
                score = similarity(existing, invoice_number, amount)
                if score > self.similarity_threshold:
                    existing.duplicate_invoice_ids.append(invoice_id)
                    self._reinforce(existing)
                    logger.info(
                        "Invoice %s recorded as duplicate of %s (similarity %.2f)",
                        invoice_id,
                        existing.original_invoice_id,
                        score,
                    )
                    return True, existing
                return False, existing

            record = DuplicateRecord(
                **self._new_record_fields(DuplicateRecord, ce.initial(self.settings)),
                duplicate_hash=duplicate_hash,
                original_invoice_id=invoice_id,
                vendor_id=vendor_key(vendor_id, vendor_name),
                invoice_number=invoice_number,
                amount=amount if amount is not None else Decimal("0"),
            )
            self.duplicates.append(record)
            self.is_dirty = True
            return False, record

    def resolve_duplicate(self, record_id: str, confirmed: bool) -> Optional[DuplicateRecord]:
        """Mark a duplicate lineage as confirmed or rejected by a human."""
        with self._lock:
            for record in self.duplicates:
                if record.id == record_id:
                    record.confirmed_duplicate = confirmed
                    record.resolution = (
                        DuplicateResolution.CONFIRMED if confirmed else DuplicateResolution.REJECTED
                    )
                    record.updated_at = self._now_ts()
                    self.is_dirty = True
                    return record
            return None

    # =========================================================================
    # Confidence lifecycle
    # =========================================================================

    def all_records(self) -> Iterator[MemoryRecord]:
        yield from self.vendors.values()
        yield from self.corrections
        yield from self.resolutions
        yield from self.duplicates

    def find_memory_by_id(self, memory_id: str) -> Optional[MemoryRecord]:
        for record in self.all_records():
            if record.id == memory_id:
                return record
        return None

    def _reinforce(self, record: MemoryRecord) -> None:
        record.confidence = ce.reinforce(record.confidence, self.settings)
        record.reinforcement_count += 1
        record.updated_at = self._now_ts()
        self.is_dirty = True

    def _deactivate_if_needed(self, record: MemoryRecord, cause: str) -> bool:
        if record.is_active and ce.should_deactivate(record.confidence, self.settings):
            record.is_active = False
            logger.info(
                "Memory %s deactivated due to %s (confidence %.3f)",
                record.id,
                cause,
                record.confidence,
            )
            return True
        return False

    def reinforce_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        """Reinforce any record by id. Unknown ids are a no-op."""
        with self._lock:
            record = self.find_memory_by_id(memory_id)
            if record is None:
                return None
            self._reinforce(record)
            return record

    def penalize_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        """Penalize any record by id, deactivating it below the threshold."""
        with self._lock:
            record = self.find_memory_by_id(memory_id)
            if record is None:
                return None
            record.confidence = ce.penalize(record.confidence, self.settings)
            record.contradiction_count += 1
            record.updated_at = self._now_ts()
            self._deactivate_if_needed(record, "contradiction")
            self.is_dirty = True
            return record

    def apply_decay_to_all(self, now: Optional[datetime] = None) -> list[MemoryUpdate]:
        """
        Decay every active record by the time since it was last updated.

        Intervals already decayed by an earlier run are not decayed again.

        Returns:
            One "decay" MemoryUpdate per record whose confidence changed
        """
        with self._lock:
            now = now or self._now()
            updates: list[MemoryUpdate] = []
            deactivated = 0

            for record in self.all_records():
                if not record.is_active:
                    continue
                decayed = ce.apply_decay(
                    record.confidence,
                    parse_timestamp(record.updated_at),
                    now,
                    self.settings,
                    decayed_through=(
                        parse_timestamp(record.decayed_at) if record.decayed_at else None
                    ),
                )
                if decayed == record.confidence:
                    continue

                previous = record.confidence
                record.confidence = decayed
                record.decayed_at = to_timestamp(now)
                self.is_dirty = True
                if self._deactivate_if_needed(record, "decay"):
                    deactivated += 1
                updates.append(
                    MemoryUpdate(
                        operation=UpdateOperation.DECAY,
                        memory_type=record.memory_type,
                        record_id=record.id,
                        data={
                            "previous_confidence": round(previous, 4),
                            "confidence": round(decayed, 4),
                            "is_active": record.is_active,
                        },
                        reason="Time-based confidence decay",
                    )
                )

            logger.info(
                "Decay maintenance: %d record(s) decayed, %d deactivated",
                len(updates),
                deactivated,
            )
            return updates

    # =========================================================================
    # Statistics
    # =========================================================================

    def update_stats(
        self,
        corrections_applied: int = 0,
        human_review_required: bool = False,
        confidence: Optional[float] = None,
    ) -> MemoryStats:
        """Count one processed invoice; average_confidence is a running mean."""
        with self._lock:
            stats = self.stats
            stats.total_invoices_processed += 1
            stats.total_corrections_applied += corrections_applied
            if human_review_required:
                stats.total_human_reviews_requested += 1
            if confidence is not None:
                n = stats.total_invoices_processed
                stats.average_confidence = (stats.average_confidence * (n - 1) + confidence) / n
            self.is_dirty = True
            return stats
