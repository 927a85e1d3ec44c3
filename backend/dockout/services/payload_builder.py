"""
Upstream payload construction.

Every fallback literal that ends up in an outbound payload lives in one of the
named tables below and is passed into the builder that uses it, so the
defaults can be audited and overridden in isolation.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dockout.config import settings
from dockout.schemas.workflow import AdditionalMaterial, DeliveryOrderItem, LoadedDetail
from dockout.utils.numbers import decimal_text


# ── Stock move (ZSTOCK_MOVE_SRV) ──────────────────────────────────────────────

def build_stock_move_payload(do_no: str, items: Sequence[DeliveryOrderItem]) -> Dict[str, Any]:
    """Stock-move request body; quantities and batches are the operator-confirmed values."""
    return {
        "Dono": do_no,
        "OrderToItem": [
            {
                "Posnr": item.posnr,
                "Matnr": item.material,
                "Batch": item.actual_batch,
                "Quantity": decimal_text(item.actual_quantity),
                "Uom": item.uom,
                "StorageType": item.storage_type.value,
                "Storage": item.storage,
                "ToStorage": item.dest_sloc.value,
                "VepToken": item.vep_token or "",
                "DocCata": item.doc_cata or "",
                "UECHA": item.uecha or "",
            }
            for item in items
        ],
    }


# ── Picking (ZWH_BATCH_UPDATE_SRV / getloadingsequence) ───────────────────────

# target field -> ordered source keys on a stock-move result line
PICKING_FIELD_SOURCES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("tokenno", ("VepToken",)),
    ("obd_no", ()),
    ("posnr", ("Posnr",)),
    ("matnr", ("Matnr",)),
    ("charg", ("Batch",)),
    ("sequenceno", ("Sequenceno",)),
    ("maktx", ("Maktx", "Matnr")),
    ("pstyv", ("DocCata",)),
    ("speLoekz", ()),
    ("werks", ("Werks", "Plant")),
    ("lgort", ("ToStorage",)),
    ("lgnum", ("Warehouse",)),
    ("lgtyp", ("StorageType",)),
    ("docknum", ()),
    ("lgpla", ("Bin",)),
    ("lfimg", ("Quantity",)),
    ("meins", ("Uom",)),
    ("bolnr", ()),
    ("tanum", ()),
    ("oldcharg", ("OldBatch",)),
    ("vtweg", ()),
    ("uecha", ("UECHA", "Uecha")),
)


def picking_field_defaults(plant: Optional[str] = None) -> Dict[str, Any]:
    defaults: Dict[str, Any] = {target: "" for target, _ in PICKING_FIELD_SOURCES}
    defaults.update(
        {
            "werks": plant if plant is not None else settings.DEFAULT_PLANT,
            "speLoekz": False,
            "sequenceno": "01",
        }
    )
    return defaults


def _pick(source: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return None


def build_picking_entry(
    line: Mapping[str, Any],
    obd_no: str,
    defaults: Mapping[str, Any],
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {}
    for target, sources in PICKING_FIELD_SOURCES:
        if target == "obd_no":
            entry[target] = obd_no
            continue
        value = _pick(line, sources)
        entry[target] = value if value is not None else defaults[target]
    return entry


def build_picking_payload(
    stock_move_response: Mapping[str, Any],
    defaults: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Derive the picking request from a successful stock-move response."""
    defaults = defaults if defaults is not None else picking_field_defaults()
    header = stock_move_response.get("d") or {}
    lines: List[Mapping[str, Any]] = (header.get("OrderToItem") or {}).get("results") or []
    obd_no = header.get("Dono") or ""
    tokenno = lines[0].get("VepToken", "") if lines else ""
    return {
        "tokenno": tokenno,
        "getloadingsequence": {
            "results": [build_picking_entry(line, obd_no, defaults) for line in lines],
        },
    }


def item_as_stock_move_line(item: DeliveryOrderItem) -> Dict[str, Any]:
    """Present a local item in the stock-move result shape so it shares the picking mapping."""
    return {
        "VepToken": item.vep_token,
        "Posnr": item.posnr,
        "Matnr": item.material,
        "Batch": item.actual_batch,
        "Sequenceno": item.sequence_no,
        "Maktx": item.material_des,
        "DocCata": item.doc_cata,
        "Werks": item.plant,
        "ToStorage": item.dest_sloc.value,
        "Warehouse": item.warehouse,
        "StorageType": item.storage_type.value,
        "Bin": item.bin,
        "Quantity": decimal_text(item.actual_quantity),
        "Uom": item.uom,
        "OldBatch": item.batch,
        "UECHA": item.uecha,
    }


def build_picking_payload_from_items(
    do_no: str,
    items: Sequence[DeliveryOrderItem],
    defaults: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    return build_picking_payload(
        {
            "d": {
                "Dono": do_no,
                "OrderToItem": {"results": [item_as_stock_move_line(i) for i in items]},
            }
        },
        defaults=defaults,
    )


# ── TEG loading update ────────────────────────────────────────────────────────

TEG_FIELD_DEFAULTS: Dict[str, str] = {
    "batchLineNo": "900005",
    "actualWeight": "1183.096",
    "chargedWeight": "2127.870",
    "lineItem": "000010",
}

# uecha values that mean "no higher-level item"
BLANK_LINE_ITEMS = frozenset({"", "000000"})


def build_loading_detail(row: LoadedDetail, defaults: Mapping[str, str]) -> Dict[str, Any]:
    return {
        "doNumber": row.obd_no,
        "quantity": row.prqty,
        "batchNo": row.charg,
        "batchLineNo": row.posnr or defaults["batchLineNo"],
        "storageLocation": row.lgort,
        "batchQuantity": row.lfimg,
        "loadedQuantity": row.lfimg,
        "materialCode": row.matnr,
        "actualWeight": row.ntgew or defaults["actualWeight"],
        "lineItem": defaults["lineItem"] if (row.uecha or "") in BLANK_LINE_ITEMS else row.uecha,
        "chargedWeight": row.brgew or defaults["chargedWeight"],
    }


def build_loading_update(
    token: str,
    rows: Sequence[LoadedDetail],
    is_completed: bool,
    defaults: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    defaults = defaults if defaults is not None else TEG_FIELD_DEFAULTS
    return {
        "token": token,
        "isLoadingCompleted": is_completed,
        "loadingDetails": [build_loading_detail(row, defaults) for row in rows],
    }


def build_additional_materials(token: str, materials: Sequence[AdditionalMaterial]) -> Dict[str, Any]:
    return {
        "token": token,
        "isLoadingCompleted": True,
        "additionalMaterials": [
            {
                "materialDescription": m.material_id.value,
                "chargedWeight": m.quantity,
                "uom": m.uom.value,
            }
            for m in materials
        ],
    }
