"""Fashion Mixer — fuse texture, silhouette and color references into a concept."""
