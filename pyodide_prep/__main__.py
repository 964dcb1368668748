from pyodide_prep.cli import main

main()
