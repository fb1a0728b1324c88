#!/usr/bin/env python3
"""
Rectangle Atlas Packer: Greedy Shelf-Splitting 2-D Packing + SVG Preview
=========================================================================
Packs a set of rectangles (sprites, textures, labels ...) into a single
near-square bounding box with as little wasted area as possible.

Architecture
------------
  Item / Space / Packing   Plain data records (input, placement, summary).
  ShelfPacker              Deterministic greedy packer.  Items are sorted by
                           height and dropped into a shrinking list of free
                           spaces, newest space first.
  pack() / pack_result()   Functional entry points around ShelfPacker.
  parse_csv()              Read item sizes from a delimited CSV file.
  AtlasSVGGenerator        Render a packing to SVG for visual inspection.
  run_benchmark()          Timing driver over a synthetic item set.

Usage
-----
    python potpack.py sprites.csv
    python potpack.py sprites.csv -o build/atlas.svg
    python potpack.py sprites.csv -c my_settings.ini
    python potpack.py --bench 5000

Input CSV Format
----------------
    "ID";"WIDTH";"HEIGHT";"QUANTITY"
    QUANTITY is optional and defaults to 1.

Output order
------------
    Placements are returned in packing order (tallest item first), not in
    input order.  Use PackResult.placements_by_id() to look them up by id.

Dependencies
------------
    Required : svgwrite
"""

import argparse
import configparser
import csv
import math
import os
import sys
import time
import traceback
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import svgwrite

# ============================================================================
# CONSTANTS
# ============================================================================

# Target fill used to guess the starting shelf width.
TARGET_FILL = 0.95

# Absolute tolerance for matching an item edge against a free space edge.
EPSILON = 1e-4

CONFIG_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)),
                           'potpack.ini')


def approx_eq(a: float, b: float) -> bool:
    """Return True if *a* and *b* differ by less than EPSILON."""
    return abs(a - b) < EPSILON


class PackingError(RuntimeError):
    """No free space could accept an item; the packing is unusable."""


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class Item:
    """
    Immutable input rectangle.

    Attributes
    ----------
    id : Caller-supplied identifier, or None when the item is anonymous.
    w  : Width  (finite, >= 0).
    h  : Height (finite, >= 0).
    """

    id: Optional[Hashable]
    w: float
    h: float

    def __post_init__(self) -> None:
        for name, value in (('width', self.w), ('height', self.h)):
            if not math.isfinite(value) or value < 0:
                raise ValueError(
                    f"Item {self.id!r}: {name} must be a finite, "
                    f"non-negative number (got {value!r})")

    @property
    def area(self) -> float:
        return self.w * self.h


@dataclass
class Space:
    """
    Axis-aligned rectangle with its top-left corner at (x, y).

    Used both for item placements (``id`` is the item's id) and for free
    spaces, whose ``id`` is None or inherited from the space they were
    split from.
    """

    id: Optional[Hashable]
    x: float
    y: float
    w: float
    h: float

    @classmethod
    def from_item(cls, item: Item) -> 'Space':
        return cls(item.id, 0.0, 0.0, float(item.w), float(item.h))

    @property
    def area(self) -> float:
        return self.w * self.h


@dataclass
class Packing:
    """
    Bounding box of a packing.

    Attributes
    ----------
    w    : Furthest right edge reached by any item.
    h    : Furthest bottom edge reached by any item.
    fill : Total item area / (w * h), in (0, 1].  Defined as 0.0 when the
           bounding box has no area (no items, or only zero-sized ones).
    """

    w: float
    h: float
    fill: float


@dataclass
class PackResult:
    """Everything a packing run produces."""

    packing: Packing
    placements: List[Space] = field(default_factory=list)
    free_spaces: List[Space] = field(default_factory=list)

    def placements_by_id(self) -> Dict[Hashable, Space]:
        """Map item id -> placement.  Anonymous items are left out."""
        return {p.id: p for p in self.placements if p.id is not None}


# ============================================================================
# SHELF PACKER
# ============================================================================

class ShelfPacker:
    """
    Greedy shelf-splitting packer for a single, growable bin.

    Algorithm overview
    ------------------
    1. Sort items by height, tallest first (stable, so equal heights keep
       their input order).
    2. Guess a starting width from the total area and TARGET_FILL, never
       narrower than the widest item.  The bin starts as one free space of
       that width and unbounded height.
    3. For each item, scan the free spaces from the most recently created
       to the oldest and take the first one the item fits in.  The item
       goes into the space's top-left corner and the space is removed,
       shrunk, or split in two.

    The list of free spaces left over after the last item is kept on
    ``free_spaces`` for inspection.
    """

    def __init__(self) -> None:
        self.free_spaces: List[Space] = []

    def pack(self, items: Sequence[Item]) -> Tuple[Packing, List[Space]]:
        """
        Place every item and return the bounding box and the placements.

        Parameters
        ----------
        items : Rectangles to place.

        Returns
        -------
        (Packing, placements). Placements are in packing order (tallest
        first), one per input item.

        Raises
        ------
        PackingError if an item finds no free space to go into.
        """
        boxes = [Space.from_item(item) for item in items]

        # total box area and widest box, in one pass
        area = 0.0
        max_width = 0.0
        for box in boxes:
            area += box.area
            max_width = max(max_width, box.w)

        boxes.sort(key=lambda b: b.h, reverse=True)

        start_width = max(float(math.ceil(math.sqrt(area / TARGET_FILL))),
                          max_width)
        spaces = [Space(None, 0.0, 0.0, start_width, math.inf)]

        width = 0.0
        height = 0.0

        for box in boxes:
            i = self._find_space(spaces, box)
            if i is None:
                raise PackingError(
                    f"No free space for item {box.id!r} ({box.w} x {box.h}); "
                    f"start width was {start_width}")

            space = spaces[i]
            box.x = space.x
            box.y = space.y

            width = max(width, box.x + box.w)
            height = max(height, box.y + box.h)

            self._consume_space(spaces, i, box)

        self.free_spaces = spaces
        bbox_area = width * height
        fill = area / bbox_area if bbox_area > 0 else 0.0
        return Packing(width, height, fill), boxes

    @staticmethod
    def _find_space(spaces: List[Space], box: Space) -> Optional[int]:
        """Index of the newest space that can hold *box*, or None."""
        for i in range(len(spaces) - 1, -1, -1):
            space = spaces[i]
            if box.w > space.w or box.h > space.h:
                continue
            return i
        return None

    @staticmethod
    def _consume_space(spaces: List[Space], i: int, box: Space) -> None:
        """
        Update ``spaces[i]`` after *box* has been put in its corner.

        Four outcomes, depending on which edges of the box line up with
        the space:

        * both (exact float equality): the space is used up and removed
          by moving the last entry into its slot;
        * height only: the space becomes the strip right of the box;
        * width only: the space becomes the strip below the box;
        * neither: the strip right of the box becomes a new space and
          the original shrinks to the area below the box.

        The single-edge checks use approx_eq; the full-match check does not.
        """
        space = spaces[i]

        if box.w == space.w and box.h == space.h:
            last = spaces.pop()
            if i < len(spaces):
                spaces[i] = last

        elif approx_eq(box.h, space.h):
            # |-------|---------------|
            # |  box  | updated space |
            # |_______|_______________|
            space.x += box.w
            space.w -= box.w

        elif approx_eq(box.w, space.w):
            # |---------------|
            # |      box      |
            # |_______________|
            # | updated space |
            # |_______________|
            space.y += box.h
            space.h -= box.h

        else:
            # |-------|-----------|
            # |  box  | new space |
            # |_______|___________|
            # | updated space     |
            # |___________________|
            spaces.append(Space(space.id, space.x + box.w, space.y,
                                space.w - box.w, box.h))
            space.y += box.h
            space.h -= box.h


def pack(items: Sequence[Item]) -> Tuple[Packing, List[Space]]:
    """Pack *items* and return ``(Packing, placements)``."""
    return ShelfPacker().pack(items)


def pack_result(items: Sequence[Item]) -> PackResult:
    """Pack *items* and keep the leftover free spaces alongside the result."""
    packer = ShelfPacker()
    packing, placements = packer.pack(items)
    return PackResult(packing, placements, packer.free_spaces)


# ============================================================================
# CONFIGURATION
# ============================================================================

DEFAULT_CONFIG = {
    'colors': {
        'item': '#4caf50',
        'free': '#f44336',
        'outline': '#212121',
    },
    'render': {
        'stroke_width': '0.5',
        'show_free_spaces': 'no',
        'show_ids': 'yes',
        'padding': '0',
    },
    'bench': {
        'count': '1000',
    },
}


def load_config(path: str = CONFIG_FILE) -> configparser.ConfigParser:
    """
    Load rendering / benchmark settings from an INI file.

    Built-in defaults are applied first, so the file only needs to list
    the keys it overrides.  A missing file is not an error.

    Parameters
    ----------
    path : INI file to read (default: potpack.ini next to this module).

    Returns
    -------
    ConfigParser with the sections colors, render and bench.
    """
    cfg = configparser.ConfigParser()
    cfg.read_dict(DEFAULT_CONFIG)
    if path and os.path.exists(path):
        cfg.read(path, encoding='utf-8')
        print(f"  → Loaded config: {path}")
    return cfg


CFG = load_config()


# ============================================================================
# CSV PARSER
# ============================================================================

def parse_csv(filename: str) -> List[Item]:
    """
    Parse a CSV file of rectangle sizes into Item objects.

    The delimiter and quote character are detected with ``csv.Sniffer``;
    if that fails the parser falls back to semicolons with double quotes.

    Recognised columns (case-insensitive):

    ==========  ==============================
    Column      Aliases
    ==========  ==============================
    ID          NAME, SPRITE
    WIDTH       W, WIDTH(PX)
    HEIGHT      H, HEIGHT(PX)
    QUANTITY    QTY, COUNT  (optional, 1)
    ==========  ==============================

    A row with QUANTITY n > 1 becomes n items with ids ``<id>#1`` ..
    ``<id>#n``.  An empty ID cell gives an anonymous item.  Rows that
    cannot be parsed, or have negative sizes, are skipped with a warning.

    Parameters
    ----------
    filename : Path to the input CSV file (UTF-8 encoded).

    Returns
    -------
    List of Item objects; empty if the header is missing or incomplete.
    """
    items: List[Item] = []

    with open(filename, 'r', encoding='utf-8', newline='') as f:
        sample = f.read(4096)
        f.seek(0)
        delimiter = ';'
        quotechar = '"'
        try:
            detected = csv.Sniffer().sniff(sample, delimiters=',;\t|')
            delimiter = detected.delimiter
            quotechar = detected.quotechar or '"'
            print(f"  → Detected CSV dialect: delimiter={delimiter!r} "
                  f"quotechar={quotechar!r}")
        except csv.Error:
            print(f"  ⚠️  Warning: CSV dialect detection failed.")
            print(f"  ↩  Falling back to default: delimiter={delimiter!r}  "
                  f"quotechar={quotechar!r}")

        reader = csv.reader(f,
                            delimiter=delimiter,
                            quotechar=quotechar,
                            doublequote=True,
                            skipinitialspace=True)

        header = next(reader, None)
        if not header:
            print("Error: Empty CSV file")
            return []

        header = [h.strip().strip('"').upper() for h in header]
        field_map = {name: i for i, name in enumerate(header)}

        columns = {
            'ID': ['ID', 'NAME', 'SPRITE'],
            'WIDTH': ['WIDTH', 'W', 'WIDTH(PX)'],
            'HEIGHT': ['HEIGHT', 'H', 'HEIGHT(PX)'],
            'QUANTITY': ['QUANTITY', 'QTY', 'COUNT'],
        }
        optional = {'ID', 'QUANTITY'}

        indices: Dict[str, int] = {}
        for key, names in columns.items():
            for name in names:
                if name in field_map:
                    indices[key] = field_map[name]
                    break
            if key not in indices and key not in optional:
                print(f"Error: Required field not found. Looking for one of: {names}")
                print(f"Available fields: {header}")
                return []

        row_num = 1
        for row in reader:
            row_num += 1

            if not row or all(not cell.strip() for cell in row):
                continue

            try:
                item_id = row[indices['ID']].strip() if 'ID' in indices else ''
                width = float(row[indices['WIDTH']].strip())
                height = float(row[indices['HEIGHT']].strip())
                quantity = 1
                if 'QUANTITY' in indices and row[indices['QUANTITY']].strip():
                    quantity = int(row[indices['QUANTITY']].strip())
                if quantity < 1:
                    raise ValueError(f"quantity must be >= 1 (got {quantity})")

                if quantity == 1:
                    ids = [item_id or None]
                else:
                    ids = [f"{item_id}#{n}" if item_id else None
                           for n in range(1, quantity + 1)]
                row_items = [Item(i, width, height) for i in ids]
            except (ValueError, IndexError) as e:
                print(f"Warning: Skipping invalid row {row_num}: {e}")
                print(f"  Row data: {row}")
                continue

            items.extend(row_items)
            print(f"  Row {row_num}: {quantity}x {item_id or '<anonymous>'} "
                  f"({width}x{height})")

    return items


# ============================================================================
# SVG OUTPUT
# ============================================================================

class AtlasSVGGenerator:
    """
    Render a PackResult as an SVG preview.

    Groups in draw order (back to front):

    ===========  ==========================================================
    Group id     Content
    ===========  ==========================================================
    bounds       Outline of the bounding box.
    items        One filled rectangle per non-empty placement.
    free_spaces  Outlines of the leftover free spaces, clipped to the
                 bounding box ([render] show_free_spaces).
    labels       Item ids centred on their rectangles ([render] show_ids).
    ===========  ==========================================================
    """

    def __init__(self, result: PackResult,
                 cfg: Optional[configparser.ConfigParser] = None) -> None:
        self.result = result
        cfg = cfg if cfg is not None else CFG
        self.color_item = cfg.get('colors', 'item')
        self.color_free = cfg.get('colors', 'free')
        self.color_outline = cfg.get('colors', 'outline')
        self.stroke_width = cfg.getfloat('render', 'stroke_width')
        self.show_free_spaces = cfg.getboolean('render', 'show_free_spaces')
        self.show_ids = cfg.getboolean('render', 'show_ids')
        self.padding = cfg.getfloat('render', 'padding')

    def generate(self) -> str:
        """
        Render the packing to an SVG string.

        Returns
        -------
        Complete SVG document, with a metadata comment (item count, size
        and fill) right after the XML declaration.
        """
        packing = self.result.packing
        pad = self.padding
        width = packing.w + 2 * pad
        height = packing.h + 2 * pad

        dwg = svgwrite.Drawing(size=(width, height),
                               viewBox=f"0 0 {width} {height}")
        dwg.defs.add(dwg.style(f"""
            .outline {{ fill: none; stroke: {self.color_outline}; stroke-width: {self.stroke_width}; }}
            .item {{ fill: {self.color_item}; stroke: {self.color_outline}; stroke-width: {self.stroke_width}; }}
            .free {{ fill: none; stroke: {self.color_free}; stroke-width: {self.stroke_width}; stroke-dasharray: 2,1; }}
            .label {{ fill: {self.color_outline}; text-anchor: middle; dominant-baseline: central; font-family: sans-serif; }}
        """))

        bounds = dwg.g(id='bounds')
        bounds.add(dwg.rect(insert=(pad, pad), size=(packing.w, packing.h),
                            class_='outline'))
        dwg.add(bounds)

        items = dwg.g(id='items')
        for p in self.result.placements:
            if p.w > 0 and p.h > 0:
                items.add(dwg.rect(insert=(p.x + pad, p.y + pad),
                                   size=(p.w, p.h), class_='item'))
        dwg.add(items)

        if self.show_free_spaces:
            free = dwg.g(id='free_spaces')
            for x, y, w, h in self._visible_free_spaces():
                free.add(dwg.rect(insert=(x + pad, y + pad), size=(w, h),
                                  class_='free'))
            dwg.add(free)

        if self.show_ids:
            labels = dwg.g(id='labels')
            for p in self.result.placements:
                if p.id is None or p.w <= 0 or p.h <= 0:
                    continue
                labels.add(dwg.text(str(p.id),
                                    insert=(p.x + pad + p.w / 2,
                                            p.y + pad + p.h / 2),
                                    font_size=max(min(p.w, p.h) * 0.4, 1),
                                    class_='label'))
            dwg.add(labels)

        svg_string = dwg.tostring()

        metadata_comment = f"""
<!-- Atlas Packer -->
<!-- Items: {len(self.result.placements)} -->
<!-- Size: {packing.w:g} x {packing.h:g} -->
<!-- Fill: {packing.fill * 100:.1f}% -->
"""
        if svg_string.startswith('<?xml'):
            xml_decl_end = svg_string.find('?>') + 2
            svg_string = svg_string[:xml_decl_end] + metadata_comment + svg_string[xml_decl_end:]
        else:
            svg_string = metadata_comment + svg_string

        return svg_string

    def _visible_free_spaces(self) -> List[Tuple[float, float, float, float]]:
        # free spaces are unbounded below; clip them to the bounding box
        packing = self.result.packing
        visible = []
        for s in self.result.free_spaces:
            x1 = min(s.x + s.w, packing.w)
            y1 = min(s.y + s.h, packing.h)
            if x1 > s.x and y1 > s.y:
                visible.append((s.x, s.y, x1 - s.x, y1 - s.y))
        return visible


# ============================================================================
# BENCHMARK
# ============================================================================

def benchmark_items(count: int) -> List[Item]:
    """Synthetic item set: item i is i wide and (i % 10) * 10 tall."""
    return [Item(i, float(i), float((i % 10) * 10)) for i in range(count)]


def run_benchmark(count: int) -> Tuple[PackResult, float]:
    """
    Pack ``benchmark_items(count)`` and report how long it took.

    Returns
    -------
    (PackResult, elapsed time in milliseconds)
    """
    items = benchmark_items(count)

    start = time.perf_counter()
    result = pack_result(items)
    elapsed_ms = (time.perf_counter() - start) * 1000.0

    packing = result.packing
    print(f"Packed {count} item(s) in {elapsed_ms:.2f} ms")
    print(f"width: {packing.w:g}, height: {packing.h:g}, fill: {packing.fill:.4f}")
    return result, elapsed_ms


# ============================================================================
# MAIN FUNCTION
# ============================================================================

def generate_atlas(csv_file: str, output_file: str = "output/atlas.svg",
                   cfg: Optional[configparser.ConfigParser] = None) -> Optional[str]:
    """
    Full pipeline: parse CSV → pack → write an SVG preview.

    Parameters
    ----------
    csv_file : str
        Path to the CSV with item sizes.
    output_file : str, optional
        Where to write the SVG (default ``"output/atlas.svg"``).  Parent
        directories are created as needed.
    cfg : ConfigParser, optional
        Settings to render with (default: the module-level CFG).

    Returns
    -------
    Optional[str]
        Path of the written SVG, or None if the CSV held no valid items.
    """
    print("=" * 70)
    print("ATLAS PACKER")
    print("=" * 70)
    print(f"\nReading items from: {csv_file}")
    print()

    items = parse_csv(csv_file)

    if not items:
        print("\n❌ Error: No valid items found in CSV")
        return None

    total_area = sum(item.area for item in items)
    print(f"\n✅ Found {len(items)} item(s)")
    print(f"✅ Total item area: {total_area:.1f}")

    print(f"\n{'─' * 70}")
    print("PACKING")
    print(f"{'─' * 70}")

    result = pack_result(items)
    packing = result.packing

    print(f"✅ Bounding box: {packing.w:g} x {packing.h:g}")
    print(f"✅ Fill: {packing.fill * 100:.1f}%")
    print(f"   Free spaces left: {len(result.free_spaces)}")

    print(f"\n{'─' * 70}")
    print("GENERATING SVG")
    print(f"{'─' * 70}")

    out_dir = os.path.dirname(output_file)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    svg_content = AtlasSVGGenerator(result, cfg).generate()
    with open(output_file, 'w', encoding='utf-8') as f:
        f.write(svg_content)

    print(f"\n📄 {output_file}")
    print(f"\n{'═' * 70}")
    print(f"✅ SUCCESS: Packed {len(result.placements)} item(s)")
    print(f"{'═' * 70}")
    print()

    return output_file


# ============================================================================
# CLI INTERFACE
# ============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Pack rectangles into a compact atlas and preview it as SVG",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python potpack.py sprites.csv
  python potpack.py sprites.csv -o build/atlas.svg
  python potpack.py sprites.csv -c my_settings.ini
  python potpack.py --bench                  # [bench] count items
  python potpack.py --bench 5000

CSV Format:
  "ID";"WIDTH";"HEIGHT";"QUANTITY"      (QUANTITY optional)
        """
    )

    parser.add_argument("csv_file", nargs="?", help="Input CSV file path")
    parser.add_argument("-o", "--output", default="output/atlas.svg",
                        help="Output SVG path (default: output/atlas.svg). "
                             "The directory is created automatically.")
    parser.add_argument("-c", "--config", default=None, metavar="INI",
                        help="Settings file (default: potpack.ini next to "
                             "potpack.py, if present)")
    parser.add_argument("--bench", type=int, nargs="?", const=0, default=None,
                        metavar="N",
                        help="Run the benchmark over N synthetic items "
                             "instead of reading a CSV")

    args = parser.parse_args(argv)

    if args.csv_file is None and args.bench is None:
        parser.error("either csv_file or --bench is required")

    if args.config and not os.path.exists(args.config):
        print(f"\n❌ Error: Config file '{args.config}' not found")
        return 1
    cfg = load_config(args.config) if args.config else CFG

    try:
        if args.bench is not None:
            count = args.bench or cfg.getint('bench', 'count')
            run_benchmark(count)
        else:
            if generate_atlas(args.csv_file, args.output, cfg) is None:
                return 1
    except FileNotFoundError:
        print(f"\n❌ Error: File '{args.csv_file}' not found")
        return 1
    except Exception as e:
        print(f"\n❌ Error: {e}")
        traceback.print_exc()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
