import matplotlib

# Headless backend for the QC overlay figures
matplotlib.use('Agg')
