"""
Shared pytest fixtures: synthetic Berlin listings with known group means.
"""

import numpy as np
import pandas as pd
import pytest


# (room_type, superhost flag) -> mean nightly price
GROUP_MEANS = {
    ("Entire home/apt", False): 144.0,
    ("Entire home/apt", True): 168.0,
    ("Private room", False): 95.5,
    ("Private room", True): 74.3,
}
ROOM_LABELS = {"Entire home/apt": "Entire Place", "Private room": "Private Room"}
NEIGHBOURHOODS = ["Mitte", "Kreuzkölln", "Prenzlauer Berg Süd", "Friedrichshain", "Neukölln"]
# every review bucket (0 / 1-10 / 11-50 / 50+) is represented in each group
REVIEW_PATTERN = [0, 3, 7, 25, 40, 80, 120, 15, 60, 5]
N_PER_GROUP = 60


def _make_listings(seed=7, n_per_group=N_PER_GROUP):
    rng = np.random.default_rng(seed)
    frames = []
    next_id = 1
    for (room_type, superhost), mean in GROUP_MEANS.items():
        raw = mean * np.exp(rng.normal(0, 0.35, n_per_group))
        prices = np.round(raw * mean / raw.mean(), 6)
        frames.append(pd.DataFrame({
            "id": np.arange(next_id, next_id + n_per_group),
            "room_type": room_type,
            "neighbourhood_clean": [NEIGHBOURHOODS[i % len(NEIGHBOURHOODS)] for i in range(n_per_group)],
            "number_of_reviews": [float(REVIEW_PATTERN[i % len(REVIEW_PATTERN)]) for i in range(n_per_group)],
            "accommodates": 4 if room_type == "Entire home/apt" else 2,
            "availability_365": rng.integers(0, 366, n_per_group),
            "price_numeric": prices,
            "is_superhost": superhost,
            "host_type": "Superhost" if superhost else "Regular Host",
            "room_category": ROOM_LABELS[room_type],
        }))
        next_id += n_per_group
    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def listings():
    """Cleaned listings, 60 per group, group means 144 / 168 / 95.5 / 74.3."""
    return _make_listings()


@pytest.fixture
def small_superhost_listings(listings):
    """Private-room Superhost group cut down to 5 listings."""
    private_super = listings[
        (listings["room_category"] == "Private Room") & listings["is_superhost"]
    ]
    return listings.drop(private_super.index[5:]).reset_index(drop=True)


@pytest.fixture
def raw_listings():
    """Raw export layout: formatted prices, t/f flags and a few bad rows."""
    cleaned = _make_listings()
    raw = pd.DataFrame({
        "id": cleaned["id"],
        "name": [f"Listing {i}" for i in cleaned["id"]],
        "host_id": cleaned["id"] + 1000,
        "room_type": cleaned["room_type"],
        "neighbourhood_cleansed": cleaned["neighbourhood_clean"],
        "number_of_reviews": cleaned["number_of_reviews"],
        "accommodates": cleaned["accommodates"],
        "availability_365": cleaned["availability_365"],
        "price": [f"${p:,.2f}" for p in cleaned["price_numeric"]],
        "host_is_superhost": np.where(cleaned["is_superhost"], "t", "f"),
    })
    bad_rows = pd.DataFrame({
        "id": [9001, 9002, 9003, 9004, 9005, 9006],
        "name": ["No flag", "Bad price", "Zero price", "Shared", "Palace", "No room type"],
        "host_id": [1, 2, 3, 4, 5, 6],
        "room_type": ["Private room", "Private room", "Entire home/apt",
                      "Shared room", "Entire home/apt", None],
        "neighbourhood_cleansed": ["Mitte"] * 6,
        "number_of_reviews": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0],
        "accommodates": [2, 2, 4, 1, 10, 2],
        "availability_365": [100] * 6,
        "price": ["$80.00", "N/A", "$0.00", "$25.00", "$25,000.00", "$90.00"],
        "host_is_superhost": [None, "f", "t", "f", "t", "f"],
    })
    return pd.concat([raw, bad_rows], ignore_index=True)


@pytest.fixture
def raw_listings_csv(raw_listings, tmp_path):
    path = tmp_path / "listings.csv"
    raw_listings.to_csv(path, index=False)
    return str(path)
