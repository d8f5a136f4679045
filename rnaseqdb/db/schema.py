"""
Schema definitions for initializing the RNAseqDB database.

Tables are grouped by domain:
  • species / strain              reference taxonomy and assemblies
  • study / experiment / sample / run
                                  SRA hierarchy (public or private accessions)
  • publication / study_publication
  • track / sra_track             merged units of runs and their membership
  • bundle / bundle_track         display groups of tracks
  • file / private_file / analysis / analysis_description
                                  alignment results attached to tracks
  • vocabulary / vocabulary_track keyword tagging

Rows are never deleted; lifecycle changes go through the `status` column.
"""

# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------

CREATE_SPECIES = """
CREATE TABLE IF NOT EXISTS species (
    species_id INTEGER PRIMARY KEY AUTOINCREMENT,
    binomial_name TEXT NOT NULL,
    taxon_id INTEGER NOT NULL UNIQUE,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE','RETIRED')),
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_STRAIN = """
CREATE TABLE IF NOT EXISTS strain (
    strain_id INTEGER PRIMARY KEY AUTOINCREMENT,
    species_id INTEGER NOT NULL,
    strain TEXT NOT NULL DEFAULT '',
    production_name TEXT NOT NULL UNIQUE,
    assembly TEXT,
    assembly_accession TEXT,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE','RETIRED')),
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(species_id) REFERENCES species(species_id)
);
"""

# ---------------------------------------------------------------------------
# SRA hierarchy
# ---------------------------------------------------------------------------

CREATE_STUDY = """
CREATE TABLE IF NOT EXISTS study (
    study_id INTEGER PRIMARY KEY AUTOINCREMENT,
    study_sra_acc TEXT UNIQUE,
    study_private_acc TEXT UNIQUE,
    title TEXT,
    abstract TEXT,
    metasum TEXT UNIQUE,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE','RETIRED')),
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_EXPERIMENT = """
CREATE TABLE IF NOT EXISTS experiment (
    experiment_id INTEGER PRIMARY KEY AUTOINCREMENT,
    study_id INTEGER NOT NULL,
    experiment_sra_acc TEXT UNIQUE,
    experiment_private_acc TEXT UNIQUE,
    title TEXT,
    metasum TEXT UNIQUE,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE','RETIRED')),
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(study_id) REFERENCES study(study_id)
);
"""

CREATE_SAMPLE = """
CREATE TABLE IF NOT EXISTS sample (
    sample_id INTEGER PRIMARY KEY AUTOINCREMENT,
    sample_sra_acc TEXT UNIQUE,
    sample_private_acc TEXT UNIQUE,
    title TEXT,
    description TEXT,
    taxon_id INTEGER,
    strain TEXT,
    strain_id INTEGER,
    biosample_acc TEXT,
    label TEXT,
    metasum TEXT UNIQUE,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE','RETIRED')),
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(strain_id) REFERENCES strain(strain_id)
);
"""

CREATE_RUN = """
CREATE TABLE IF NOT EXISTS run (
    run_id INTEGER PRIMARY KEY AUTOINCREMENT,
    experiment_id INTEGER NOT NULL,
    sample_id INTEGER NOT NULL,
    run_sra_acc TEXT UNIQUE,
    run_private_acc TEXT UNIQUE,
    title TEXT,
    submitter TEXT,
    metasum TEXT UNIQUE,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE','RETIRED')),
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(experiment_id) REFERENCES experiment(experiment_id),
    FOREIGN KEY(sample_id) REFERENCES sample(sample_id)
);
"""

CREATE_PUBLICATION = """
CREATE TABLE IF NOT EXISTS publication (
    publication_id INTEGER PRIMARY KEY AUTOINCREMENT,
    pubmed_id INTEGER UNIQUE,
    doi TEXT,
    authors TEXT,
    title TEXT,
    abstract TEXT,
    year INTEGER
);
"""

CREATE_STUDY_PUBLICATION = """
CREATE TABLE IF NOT EXISTS study_publication (
    study_pub_id INTEGER PRIMARY KEY AUTOINCREMENT,
    study_id INTEGER NOT NULL,
    publication_id INTEGER NOT NULL,
    FOREIGN KEY(study_id) REFERENCES study(study_id),
    FOREIGN KEY(publication_id) REFERENCES publication(publication_id),
    UNIQUE(study_id, publication_id)
);
"""

# ---------------------------------------------------------------------------
# Tracks and bundles
# ---------------------------------------------------------------------------

CREATE_TRACK = """
CREATE TABLE IF NOT EXISTS track (
    track_id INTEGER PRIMARY KEY AUTOINCREMENT,
    title_manual TEXT,
    title_auto TEXT,
    text_manual TEXT,
    text_auto TEXT,
    merge_level TEXT CHECK (merge_level IN ('taxon','study','experiment','run','sample')),
    merge_id TEXT,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE','RETIRED','MERGED')),
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_SRA_TRACK = """
CREATE TABLE IF NOT EXISTS sra_track (
    sra_track_id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL,
    track_id INTEGER NOT NULL,
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(run_id) REFERENCES run(run_id),
    FOREIGN KEY(track_id) REFERENCES track(track_id),
    UNIQUE(run_id, track_id)
);
"""

CREATE_BUNDLE = """
CREATE TABLE IF NOT EXISTS bundle (
    bundle_id INTEGER PRIMARY KEY AUTOINCREMENT,
    title_manual TEXT,
    title_auto TEXT,
    text_manual TEXT,
    text_auto TEXT,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE','RETIRED')),
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

CREATE_BUNDLE_TRACK = """
CREATE TABLE IF NOT EXISTS bundle_track (
    bundle_track_id INTEGER PRIMARY KEY AUTOINCREMENT,
    bundle_id INTEGER NOT NULL,
    track_id INTEGER NOT NULL,
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(bundle_id) REFERENCES bundle(bundle_id),
    FOREIGN KEY(track_id) REFERENCES track(track_id),
    UNIQUE(bundle_id, track_id)
);
"""

# ---------------------------------------------------------------------------
# Alignment results
# ---------------------------------------------------------------------------

CREATE_FILE = """
CREATE TABLE IF NOT EXISTS file (
    file_id INTEGER PRIMARY KEY AUTOINCREMENT,
    track_id INTEGER NOT NULL,
    path TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('fastq','bam','bai','bigwig','cram')),
    md5 TEXT,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE','RETIRED')),
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(track_id) REFERENCES track(track_id),
    UNIQUE(track_id, path)
);
"""

CREATE_PRIVATE_FILE = """
CREATE TABLE IF NOT EXISTS private_file (
    private_file_id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER NOT NULL,
    path TEXT NOT NULL,
    metasum TEXT UNIQUE,
    status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK (status IN ('ACTIVE','RETIRED')),
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(run_id) REFERENCES run(run_id)
);
"""

CREATE_ANALYSIS_DESCRIPTION = """
CREATE TABLE IF NOT EXISTS analysis_description (
    analysis_description_id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    type TEXT NOT NULL DEFAULT 'other' CHECK (type IN ('aligner','indexer','converter','other'))
);
"""

CREATE_ANALYSIS = """
CREATE TABLE IF NOT EXISTS analysis (
    analysis_id INTEGER PRIMARY KEY AUTOINCREMENT,
    track_id INTEGER NOT NULL,
    analysis_description_id INTEGER,
    version TEXT,
    command TEXT NOT NULL,
    date TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(track_id) REFERENCES track(track_id),
    FOREIGN KEY(analysis_description_id) REFERENCES analysis_description(analysis_description_id)
);
"""

# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------

CREATE_VOCABULARY = """
CREATE TABLE IF NOT EXISTS vocabulary (
    vocabulary_id INTEGER PRIMARY KEY AUTOINCREMENT,
    voc_acc TEXT NOT NULL,
    voc_type TEXT NOT NULL,
    voc_text TEXT NOT NULL,
    UNIQUE(voc_acc, voc_type)
);
"""

CREATE_VOCABULARY_TRACK = """
CREATE TABLE IF NOT EXISTS vocabulary_track (
    vocabulary_track_id INTEGER PRIMARY KEY AUTOINCREMENT,
    track_id INTEGER NOT NULL,
    vocabulary_id INTEGER NOT NULL,
    FOREIGN KEY(track_id) REFERENCES track(track_id),
    FOREIGN KEY(vocabulary_id) REFERENCES vocabulary(vocabulary_id),
    UNIQUE(track_id, vocabulary_id)
);
"""

# ---------------------------------------------------------------------------
# Indexes
# ---------------------------------------------------------------------------

CREATE_INDEX_SRA_TRACK_TRACK = "CREATE INDEX IF NOT EXISTS idx_sra_track_track ON sra_track(track_id);"
CREATE_INDEX_BUNDLE_TRACK_TRACK = "CREATE INDEX IF NOT EXISTS idx_bundle_track_track ON bundle_track(track_id);"
CREATE_INDEX_TRACK_STATUS = "CREATE INDEX IF NOT EXISTS idx_track_status ON track(status, merge_id);"
CREATE_INDEX_RUN_SAMPLE = "CREATE INDEX IF NOT EXISTS idx_run_sample ON run(sample_id);"
CREATE_INDEX_RUN_EXPERIMENT = "CREATE INDEX IF NOT EXISTS idx_run_experiment ON run(experiment_id);"
CREATE_INDEX_FILE_TRACK = "CREATE INDEX IF NOT EXISTS idx_file_track ON file(track_id, type);"
CREATE_INDEX_ANALYSIS_TRACK = "CREATE INDEX IF NOT EXISTS idx_analysis_track ON analysis(track_id);"

ALL_TABLES = [
    CREATE_SPECIES,
    CREATE_STRAIN,
    CREATE_STUDY,
    CREATE_EXPERIMENT,
    CREATE_SAMPLE,
    CREATE_RUN,
    CREATE_PUBLICATION,
    CREATE_STUDY_PUBLICATION,
    CREATE_TRACK,
    CREATE_SRA_TRACK,
    CREATE_BUNDLE,
    CREATE_BUNDLE_TRACK,
    CREATE_FILE,
    CREATE_PRIVATE_FILE,
    CREATE_ANALYSIS_DESCRIPTION,
    CREATE_ANALYSIS,
    CREATE_VOCABULARY,
    CREATE_VOCABULARY_TRACK,
]

ALL_INDEXES = [
    CREATE_INDEX_SRA_TRACK_TRACK,
    CREATE_INDEX_BUNDLE_TRACK_TRACK,
    CREATE_INDEX_TRACK_STATUS,
    CREATE_INDEX_RUN_SAMPLE,
    CREATE_INDEX_RUN_EXPERIMENT,
    CREATE_INDEX_FILE_TRACK,
    CREATE_INDEX_ANALYSIS_TRACK,
]

# Views are (re)created by init_schema: DROP + CREATE keeps them in sync
VIEW_DEFINITIONS = [
    (
        "taxonomy",
        """
        CREATE VIEW taxonomy AS
        SELECT
            sp.species_id,
            sp.taxon_id,
            sp.binomial_name,
            st.strain_id,
            st.strain,
            st.production_name,
            st.assembly,
            st.assembly_accession,
            st.status
        FROM strain st
        JOIN species sp ON sp.species_id = st.species_id
        """,
    ),
    (
        "sra_to_track",
        """
        CREATE VIEW sra_to_track AS
        SELECT
            st.study_id,
            st.study_sra_acc,
            st.study_private_acc,
            e.experiment_id,
            e.experiment_sra_acc,
            e.experiment_private_acc,
            r.run_id,
            r.run_sra_acc,
            r.run_private_acc,
            sa.sample_id,
            sa.sample_sra_acc,
            sa.sample_private_acc,
            t.track_id,
            t.status AS track_status,
            t.merge_level,
            t.merge_id
        FROM run r
        JOIN experiment e ON e.experiment_id = r.experiment_id
        JOIN study st ON st.study_id = e.study_id
        JOIN sample sa ON sa.sample_id = r.sample_id
        LEFT JOIN sra_track srt ON srt.run_id = r.run_id
        LEFT JOIN track t ON t.track_id = srt.track_id
        """,
    ),
    (
        "sra_to_active_track",
        """
        CREATE VIEW sra_to_active_track AS
        SELECT * FROM sra_to_track
        WHERE track_status = 'ACTIVE'
        """,
    ),
]
