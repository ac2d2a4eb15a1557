import numpy as np
from sklearn.neighbors import KNeighborsClassifier

from sklmnn import LMNN, LMNNFunction

# Label carried by the first feature, second feature is large noise.
rng = np.random.RandomState(0)
y = np.repeat([0, 1, 2], 30)
X = np.column_stack([y + rng.normal(scale=0.2, size=y.size),
                     rng.normal(scale=10.0, size=y.size)])

knn = KNeighborsClassifier(n_neighbors=3)
print("kNN accuracy (raw):", knn.fit(X, y).score(X, y))

lmnn = LMNN(n_neighbors=3, regularization=0.5, max_iter=100, verbose=1)
Xt = lmnn.fit_transform(X, y)
print("transformation:\n", lmnn.components_)
print("iterations:", lmnn.n_iter_)
print("objective:", lmnn.objective_)
print("kNN accuracy (LMNN):", knn.fit(Xt, y).score(Xt, y))

# ---- driving the objective directly, one batch at a time ----
print("\n=== LMNNFunction demo ===")
f = LMNNFunction(X, y, k=3, update_interval=5, random_state=0)
L = f.initial_point
for epoch in range(3):
    f.shuffle()
    total = 0.0
    for begin in range(0, f.num_functions(), 30):
        total += f.evaluate(L, begin=begin, batch_size=30)
    print(f"epoch {epoch}: summed batch cost {total:<.3e}")
print("full cost:", f.evaluate(L))
print("gradient:\n", f.gradient(L))
