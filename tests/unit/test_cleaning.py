import numpy as np
import pytest

from feedrank.data_pipeline.processors.cleaning import clean_matrix, clean_records

from helpers.factories import make_record


def test_fifty_sigma_value_replaced_by_batch_mean():
    values = np.array([0.49 if i % 2 == 0 else 0.51 for i in range(999)] + [1.0])
    inlier_mean = values[:-1].mean()
    cleaned, n_missing, n_outliers = clean_matrix(values)
    assert n_outliers == 1
    assert n_missing == 0
    assert cleaned[-1, 0] == pytest.approx(inlier_mean)
    assert cleaned[:-1, 0] == pytest.approx(values[:-1])


def test_nan_replaced_by_mean():
    cleaned, n_missing, _ = clean_matrix(np.array([[0.2], [np.nan], [0.4]]))
    assert n_missing == 1
    assert cleaned[1, 0] == pytest.approx(0.3)


def test_all_missing_column_becomes_zero():
    cleaned, n_missing, _ = clean_matrix(np.array([[np.nan, 1.0], [np.nan, 2.0]]))
    assert n_missing == 2
    assert cleaned[:, 0].tolist() == [0.0, 0.0]


def test_clean_records_clips_labels_and_counts():
    records = [make_record(0.5, 0.4), make_record(0.5, 1.7), make_record(0.5, float("nan"))]
    records[0].content_features[0] = np.nan
    out, stats = clean_records(records)
    assert len(out) == 3
    assert [r.engagement_label for r in out][:2] == [pytest.approx(0.4), 1.0]
    assert 0.0 <= out[2].engagement_label <= 1.0
    assert stats.missing_filled == 2
    assert out[0].content_features[0] == pytest.approx(0.5)


def test_clean_empty_batch():
    out, stats = clean_records([])
    assert out == [] and stats.records == 0
