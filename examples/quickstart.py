# examples/quickstart.py
import numpy as np
import deferential_abundance as da
import deferential_abundance.limma as limma

# --- make a tiny toy log2 abundance matrix (proteins x samples) ---
proteins = [f"prot{i+1}" for i in range(300)]
samples = [f"S{i+1:02d}" for i in range(8)]
rng = np.random.default_rng(1)
sd = np.sqrt(0.1 * 6 / rng.chisquare(6, size=len(proteins)))
log_expr = 22.0 + rng.standard_normal((len(proteins), len(samples))) * sd[:, None]

# sample meta with a condition; first 15 proteins go up in "treated"
cond = np.array(["ctrl"] * 4 + ["treated"] * 4)
log_expr[:15, cond == "treated"] += 1.5

# a few missing intensities, as usual for proteomics
log_expr[rng.uniform(size=log_expr.shape) < 0.03] = np.nan

from biocframe import BiocFrame
from summarizedexperiment import SummarizedExperiment

se = SummarizedExperiment(
    assays={"log_expr": log_expr},
    row_names=proteins,
    column_names=samples,
    column_data=BiocFrame({"condition": cond}),
)

# One call: design, fit, contrast, moderation, BH, classification
res = da.run_differential_abundance(se, group="condition", contrast=("treated", "ctrl"), sort_by="p")
print(res.head(20))
print(res["status"].value_counts())

# Step by step, with a fold-change threshold test at the end
design = limma.model_matrix(cond, sample_names=samples)
model = limma.lm_fit(se, design).contrasts_fit(("treated", "ctrl"))
print(model.e_bayes().top_table(n=10, sort_by="B"))
print(model.treat(lfc=1.0).top_table(n=10, sort_by="p"))
