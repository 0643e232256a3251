"""
🧪 Pytest Configuration for the survey study test suite

- Disables file logging before config.py is imported
- Restores CONFIG after every test
- Synthetic NHANES-like survey extracts (strata x PSUs x weights)
"""

import copy
import os

os.environ.setdefault("SVYSTUDY_LOGGING_FILE_ENABLED", "false")
os.environ.setdefault("SVYSTUDY_LOGGING_CONSOLE_LEVEL", "WARNING")

import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import pytest  # noqa: E402

from config import CONFIG  # noqa: E402


def make_survey_data(n: int = 500, seed: int = 42, n_strata: int = 15, psu_per_stratum: int = 3) -> pd.DataFrame:
    """
    Complete synthetic survey extract with every configured study column.

    Outcome risk rises with the exposure, age and BMI; stratum and PSU
    random effects induce design clustering.
    """
    np.random.seed(seed)

    strata = np.random.randint(1, n_strata + 1, n)
    psu = np.random.randint(1, psu_per_stratum + 1, n)
    # Every stratum x PSU cell gets at least one respondent
    cells = [(s, p) for s in range(1, n_strata + 1) for p in range(1, psu_per_stratum + 1)]
    for i, (s, p) in enumerate(cells[:n]):
        strata[i], psu[i] = s, p

    cluster_effect = np.random.normal(0, 0.3, (n_strata + 1, psu_per_stratum + 1))[strata, psu]

    age = np.random.uniform(20, 80, n)
    bmi = np.clip(np.random.normal(28, 5, n), 16, 55)
    pir = np.random.uniform(0, 5, n)
    sex = np.random.choice([1, 2], n)
    race = np.random.choice([1, 2, 3, 4], n)
    education = np.random.choice([1, 2, 3], n)
    smoking = np.random.choice([0, 1], n, p=[0.7, 0.3])
    intake = np.clip(np.random.normal(50, 15, n), 1, None)

    logit = (
        -1.0
        + 0.02 * (intake - 50)
        + 0.04 * (age - 50)
        + 0.06 * (bmi - 28)
        - 0.1 * pir
        + 0.3 * (sex == 2)
        + 0.2 * smoking
        + cluster_effect
    )
    outcome = np.random.binomial(1, 1 / (1 + np.exp(-logit)))

    return pd.DataFrame(
        {
            "SEQN": np.arange(1, n + 1),
            "hypertension": outcome.astype(float),
            "dietary_intake": intake,
            "age": age,
            "BMI": bmi,
            "PIR": pir,
            "sex": sex,
            "race": race,
            "education": education,
            "smoking": smoking,
            "energy_intake": np.random.normal(2000, 400, n),
            "alcohol_use": np.random.choice([0, 1], n),
            "physical_activity": np.clip(np.random.normal(150, 60, n), 0, None),
            "SDMVSTRA": strata,
            "SDMVPSU": psu,
            "WTDRD1": np.random.uniform(5000, 30000, n),
        }
    )


@pytest.fixture(autouse=True)
def restore_config():
    """Snapshot CONFIG and put it back after the test."""
    snapshot = copy.deepcopy(CONFIG._config)
    yield
    CONFIG._config = snapshot


@pytest.fixture
def fast_imputation():
    """Small forests keep imputation tests quick."""
    CONFIG.update("imputation.n_estimators", 20)
    CONFIG.update("imputation.max_iter", 5)


@pytest.fixture
def survey_df():
    return make_survey_data()


@pytest.fixture
def survey_design(survey_df):
    from svystudy.survey_design import build_survey_design

    return build_survey_design(survey_df)


@pytest.fixture
def make_data():
    """Factory for synthetic extracts of any size or seed."""
    return make_survey_data
