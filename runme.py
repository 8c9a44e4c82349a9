import os
import validation as v
import pandas as pd
pd.options.display.width = 0


def main(input_file=r"timestamps.csv", output_folder=None):
    # keep timestamps as text, e.g. "2018" must not become an integer
    source_df = pd.read_csv(input_file, index_col='Record ID', dtype=str)

    fields = [c for c in source_df.columns if f'Res: {c}' in source_df.columns]

    # Extract input file name without extension and create subfolder
    if output_folder is None:
        input_filename = os.path.splitext(os.path.basename(input_file))[0]
        output_folder = os.path.join("validation_results", input_filename)

    res_df, metrics_df = v.validate(
                                        source_df,
                                        fields or None,
                                        output_folder=output_folder,
                                        sort_by=fields[0] if fields else None,
                                        max_workers=1,
                                        use_threads=True)
    print(f"")
    print(metrics_df)
    print(f"Validation is Completed!")
    print(f"Validation Results and Metrics are Saved in: {output_folder}")

    return res_df, metrics_df

if __name__ == "__main__":                           # critical on Windows
    main()
