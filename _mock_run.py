import os
import runpy
import tempfile
from pathlib import Path

workdir = Path(tempfile.mkdtemp(prefix='covid_mock_'))
linelist_path = workdir / 'linelist.csv'

os.environ.setdefault('COVID_LINELIST_PATH', str(linelist_path))
os.environ.setdefault('COVID_OUTPUT_DIR', str(workdir / 'outputs'))

from covid_severity_pipeline.mock_data import generate_mock_linelist  # noqa: E402

mock_df = generate_mock_linelist(seed=42, n_dates=28)
mock_df.to_csv(linelist_path, index=False)
print(f'Mock line-listing: {linelist_path} ({len(mock_df)} rows, {mock_df["count"].sum()} events)')

runpy.run_module('covid_severity_pipeline.main', run_name='__main__')
print('MOCK_RUN_SUCCESS')
