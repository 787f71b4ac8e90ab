"""Cell type marker gene sets from curated databases.

Marker databases are stored as a long table with one row per gene and cell
type. The canonical columns are:

    celltype_full  Unique gene set name "<celltype> | <organ> | <species> |
                   <db>".
    celltype       Cell type name as given by the database.
    organ          Organ or tissue (may be empty).
    species        'hs' (human) or 'mm' (mouse).
    db             Name of the source database.
    gene           Gene symbol. Comparisons with expression data are done
                   case-insensitively.

Readers are provided for PanglaoDB, CellMarker 2.0 and GMT files.
"""

import logging
from pathlib import Path

import pandas as pd

from seqplore.dtypes.cache import memoize
from seqplore.dtypes.tables import read_dataframe
from seqplore.utils.downloader import download_dataset
from seqplore.utils.files import open_archive_member
from seqplore.utils.varia import CONFIG, SEQPLORE_DATA_DIR

logger = logging.getLogger(__name__)

MARKER_COLUMNS = [
    "celltype_full",
    "celltype",
    "organ",
    "species",
    "db",
    "gene",
]
SPECIES_ALIASES = {
    "hs": "hs",
    "human": "hs",
    "homo sapiens": "hs",
    "mm": "mm",
    "mouse": "mm",
    "mus musculus": "mm",
}
PANGLAODB = CONFIG["markers"]["panglaodb"]
CELLMARKER = CONFIG["markers"]["cellmarker"]


def normalize_species(species):
    """Returns 'hs' or 'mm' for a species name or abbreviation.

    Raises:
        ValueError: If the species is not recognized.
    """
    key = str(species).strip().lower()
    if key not in SPECIES_ALIASES:
        msg = f"Unknown species '{species}' (expected human/hs or mouse/mm)"
        raise ValueError(msg)
    return SPECIES_ALIASES[key]


def normalize_gene_case(genes, species):
    """Human gene symbols in upper case, mouse symbols capitalized."""
    genes = pd.Series(genes, dtype=object).astype(str).str.strip()
    if normalize_species(species) == "hs":
        return genes.str.upper()
    return genes.str[:1].str.upper() + genes.str[1:].str.lower()


def celltype_full_name(celltype, organ, species, db):
    """Unique name of a gene set."""
    return f"{celltype} | {organ} | {species} | {db}"


class MarkerSets:
    """Long table of cell type marker genes.

    Args:
        data_frame (pd.DataFrame): Table with at least the columns
            'celltype', 'species', 'db' and 'gene'. Missing 'organ' is filled
            with empty strings and 'celltype_full' is derived.

    Examples:
        >>> markers = MarkerSets.from_panglaodb("PanglaoDB_markers.tsv.gz")
        >>> immune = markers.filter(species="hs", organ="Immune system")
        >>> gene_sets = immune.to_gene_sets()
    """

    def __init__(self, data_frame):
        data_frame = pd.DataFrame(data_frame).copy()
        missing = {"celltype", "species", "db", "gene"} - set(data_frame)
        if missing:
            msg = f"Marker table is missing columns: {sorted(missing)}"
            raise ValueError(msg)
        if "organ" not in data_frame:
            data_frame["organ"] = ""
        data_frame = data_frame.dropna(subset=["celltype", "gene"])
        data_frame["organ"] = data_frame["organ"].fillna("").astype(str)
        data_frame["celltype"] = data_frame["celltype"].astype(str).str.strip()
        data_frame["species"] = data_frame["species"].map(normalize_species)
        data_frame["gene"] = data_frame["gene"].astype(str).str.strip()
        data_frame = data_frame[data_frame["gene"] != ""]
        data_frame["celltype_full"] = [
            celltype_full_name(*x)
            for x in zip(
                data_frame["celltype"],
                data_frame["organ"],
                data_frame["species"],
                data_frame["db"],
            )
        ]
        self.df = (
            data_frame[MARKER_COLUMNS]
            .drop_duplicates(["celltype_full", "gene"])
            .reset_index(drop=True)
        )

    @classmethod
    def from_frame(cls, data_frame):
        return cls(data_frame)

    @classmethod
    def from_dict(cls, gene_sets, species="hs", db="custom", organ=""):
        """Creates marker sets from a mapping of cell type to genes."""
        rows = [
            {
                "celltype": celltype,
                "organ": organ,
                "species": species,
                "db": db,
                "gene": gene,
            }
            for celltype, genes in gene_sets.items()
            for gene in genes
        ]
        return cls(pd.DataFrame(rows, columns=MARKER_COLUMNS[1:]))

    @classmethod
    def from_panglaodb(cls, path):
        """Reads the PanglaoDB marker TSV (optionally gzipped).

        Genes annotated for both species ('Mm Hs') are listed once per
        species.
        """
        with open_archive_member(path) as file:
            raw = pd.read_csv(file, sep="\t", dtype=str)
        raw = raw.rename(
            columns={
                PANGLAODB["species"]: "species",
                PANGLAODB["gene"]: "gene",
                PANGLAODB["celltype"]: "celltype",
                PANGLAODB["organ"]: "organ",
            }
        )
        raw["species"] = raw["species"].fillna("").str.split()
        raw = raw.explode("species").dropna(subset=["species"])
        raw = raw[raw["species"].str.lower().isin(["hs", "mm"])].copy()
        raw["gene"] = raw["gene"].fillna("")
        for species in ("hs", "mm"):
            is_species = raw["species"].str.lower() == species
            raw.loc[is_species, "gene"] = normalize_gene_case(
                raw.loc[is_species, "gene"], species
            ).to_numpy()
        raw["db"] = "PanglaoDB"
        logger.info("Read %d PanglaoDB marker rows", len(raw))
        return cls(raw)

    @classmethod
    def from_cellmarker(cls, path, normal_cells_only=True):
        """Reads a CellMarker 2.0 Excel (or csv) export."""
        raw = read_dataframe(path, dtype=str)
        if normal_cells_only and "cell_type" in raw:
            raw = raw[raw["cell_type"].str.lower() == "normal cell"]
        raw = raw.rename(
            columns={
                CELLMARKER["species"]: "species",
                CELLMARKER["gene"]: "gene",
                CELLMARKER["celltype"]: "celltype",
                CELLMARKER["organ"]: "organ",
            }
        )
        raw = raw.dropna(subset=["gene", "species"]).copy()
        raw["db"] = "CellMarker"
        logger.info("Read %d CellMarker marker rows", len(raw))
        return cls(raw)

    @classmethod
    def from_gmt(cls, path, db=None, species="hs"):
        """Reads gene sets from a GMT file.

        The first field is used as cell type, the second (description) as
        organ.
        """
        path = Path(path)
        db = db or path.name.split(".")[0]
        rows = []
        with open_archive_member(path) as file:
            for raw_line in file:
                fields = raw_line.decode().rstrip("\r\n").split("\t")
                if len(fields) < 3:
                    continue
                celltype, organ, *genes = fields
                organ = "" if organ.startswith("http") else organ
                rows.extend(
                    {
                        "celltype": celltype,
                        "organ": organ,
                        "species": species,
                        "db": db,
                        "gene": gene,
                    }
                    for gene in genes
                    if gene
                )
        return cls(pd.DataFrame(rows, columns=MARKER_COLUMNS[1:]))

    @classmethod
    def concat(cls, marker_sets):
        return cls(pd.concat([x.df for x in marker_sets], ignore_index=True))

    def filter(
        self, species=None, organ=None, db=None, min_genes=None, max_genes=None
    ):
        """Restricts the gene sets.

        Args:
            species (str, optional): 'hs' / 'mm' (or a recognized alias).
            organ (str or list, optional): Organ(s) to keep.
            db (str or list, optional): Database(s) to keep.
            min_genes (int, optional): Minimal gene set size.
            max_genes (int, optional): Maximal gene set size.
        """
        data_frame = self.df
        if species is not None:
            data_frame = data_frame[
                data_frame["species"] == normalize_species(species)
            ]
        if organ is not None:
            organs = [organ] if isinstance(organ, str) else list(organ)
            data_frame = data_frame[data_frame["organ"].isin(organs)]
        if db is not None:
            dbs = [db] if isinstance(db, str) else list(db)
            data_frame = data_frame[data_frame["db"].isin(dbs)]
        if min_genes is not None or max_genes is not None:
            sizes = data_frame.groupby("celltype_full")["gene"].transform(
                "size"
            )
            keep = pd.Series(True, index=data_frame.index)
            if min_genes is not None:
                keep &= sizes >= min_genes
            if max_genes is not None:
                keep &= sizes <= max_genes
            data_frame = data_frame[keep]
        return MarkerSets(data_frame)

    def to_gene_sets(self):
        """Returns a dict mapping 'celltype_full' to the list of genes."""
        grouped = self.df.groupby("celltype_full", sort=True)["gene"]
        return {name: genes.tolist() for name, genes in grouped}

    def set_info(self):
        """One row per gene set with its metadata and size."""
        info = (
            self.df.groupby("celltype_full", sort=True)
            .agg(
                celltype=("celltype", "first"),
                organ=("organ", "first"),
                species=("species", "first"),
                db=("db", "first"),
                n_genes=("gene", "size"),
            )
            .reset_index()
        )
        return info

    def universe(self):
        """Sorted list of all genes in any gene set."""
        return sorted(self.df["gene"].unique())

    def summary(self):
        """Number of gene sets and genes per database and species."""
        return (
            self.df.groupby(["db", "species"])
            .agg(
                n_sets=("celltype_full", "nunique"),
                n_genes=("gene", "nunique"),
            )
            .reset_index()
        )

    def __len__(self):
        return self.df["celltype_full"].nunique()

    def __str__(self):
        lines = [
            "MarkerSets(",
            f"    gene sets: {len(self)}",
            f"    genes: {self.df['gene'].nunique()}",
            f"    databases: {sorted(self.df['db'].unique())}",
            ")",
        ]
        return "\n".join(lines)

    def __repr__(self):
        return str(self)


def _load_source(source, species, save_dir):
    if source == "panglaodb":
        path = download_dataset(PANGLAODB["dataset"], save_dir)
        return MarkerSets.from_panglaodb(path)
    if source == "cellmarker":
        path = download_dataset(CELLMARKER[f"dataset_{species}"], save_dir)
        return MarkerSets.from_cellmarker(path)
    path = Path(source).expanduser()
    if path.exists():
        return MarkerSets.from_gmt(path, species=species)
    msg = (
        f"Unknown marker source '{source}' (expected 'panglaodb', "
        "'cellmarker' or the path of a GMT file)"
    )
    raise ValueError(msg)


@memoize
def load_markers(sources=None, species="hs", save_dir=SEQPLORE_DATA_DIR):
    """Downloads (if needed) and combines marker databases.

    Args:
        sources (list, optional): Marker sources, each one of 'panglaodb',
            'cellmarker' or a path to a GMT file. Defaults to the
            '[markers] default_sources' configuration.
        species (str): Species to keep. Defaults to 'hs'.
        save_dir (path_like): Download directory.

    Returns:
        MarkerSets: The combined marker gene sets for the species.
    """
    species = normalize_species(species)
    sources = sources or CONFIG["markers"]["default_sources"]
    sources = [sources] if isinstance(sources, str) else list(sources)
    marker_sets = [
        _load_source(source, species, Path(save_dir).expanduser())
        for source in sources
    ]
    markers = MarkerSets.concat(marker_sets).filter(species=species)
    logger.info("Loaded markers: %s", markers)
    return markers
