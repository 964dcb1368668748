"""pyodide-prep - Pyodide 运行时静态资源构建预处理工具"""

__version__ = "0.1.0"
