"""
Run parameters for the ring ouzel lecture.
"""

from pathlib import Path

# Study region, (min_lon, min_lat, max_lon, max_lat)
BBOX = (0.0, 35.0, 20.0, 55.0)
COUNTRY = "CHE"

GADM_URL = "https://geodata.ucdavis.edu/gadm/gadm4.1/json/gadm41_{iso}_0.json"

# CHELSA v2.1 climatologies, 1981-2010
CHELSA_URL = (
    "https://os.zhdk.cloud.switch.ch/chelsav2/GLOBAL/climatologies/1981-2010/bio/"
    "CHELSA_bio{layer}_1981-2010_V.2.1.tif"
)
BIOCLIM_NAMES = [f"BIO{i}" for i in range(1, 20)]

# EarthEnv consensus land cover, one layer per class (percent cover)
EARTHENV_URL = "https://data.earthenv.org/consensus_landcover/with_DISCover/consensus_full_class_{layer}.tif"
LANDCOVER_NAMES = [
    "Evergreen/Deciduous Needleleaf Trees",
    "Evergreen Broadleaf Trees",
    "Deciduous Broadleaf Trees",
    "Mixed/Other Trees",
    "Shrubs",
    "Herbaceous Vegetation",
    "Cultivated and Managed Vegetation",
    "Regularly Flooded Vegetation",
    "Urban/Built-up",
    "Snow/Ice",
    "Barren",
    "Open Water",
]

# Occurrence data
SPECIES_NAME = "Turdus torquatus"
DATASET_KEY = "4fa7b334-ce0d-4e88-aaae-2e0c138d049e"
PAGE_SIZE = 300

# Pseudo-absences: nothing closer than BUFFER_KM to a presence,
# ABSENCE_RATIO absences per presence
BUFFER_KM = 6.0
LECTURE_BUFFER_KM = 4.0
ABSENCE_RATIO = 2

N_FOLDS = 10
N_THRESHOLDS = 200
N_BAGS = 10
N_INFLATED = 300

SEED = 420

OUTPUT_DIR = Path("output")
LAYERS_FILE = "layers.tiff"
OCCURRENCES_FILE = "occurrences.tiff"
PRESENCES_FILE = "presences.csv"
LAYERNAMES_FILE = "layernames.csv"
