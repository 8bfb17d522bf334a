from rancher_exporter.config.settings import ExporterConfig

__all__ = ["ExporterConfig"]
